"""Idempotency guard for mutating HTTP requests, backed by Redis."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import redis
from flask import Flask, Response, g, jsonify, request

__all__ = [
    "IdempotencyEntry",
    "PROVISIONAL_LOCK_TTL",
    "MAX_CLOCK_SKEW",
    "body_hash",
    "now_utc",
    "build_key",
    "valid_request_id",
    "parse_request_at",
    "provisional_set",
    "load_entry",
    "save_final",
    "install_idempotency",
]

logger = logging.getLogger(__name__)

PROVISIONAL_LOCK_TTL = timedelta(seconds=60)
MAX_CLOCK_SKEW = timedelta(minutes=10)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_STORE_ERRORS = (redis.RedisError, OSError)
_PENDING = "idempotency_pending"

_UUID = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[1-5][a-f0-9]{3}-[89ab][a-f0-9]{3}-[a-f0-9]{12}")
_HEX32 = re.compile(r"[a-f0-9]{32}")
_INTEGER = re.compile(r"[+-]?\d+")
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})"
)
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_BAD_REQUEST_AT = "Ax-Request-At must be epoch (s/ms) or RFC3339 with timezone"


@dataclass
class IdempotencyEntry:
    """What is stored under an idempotency key: a lock, then the final response."""

    in_progress: bool = False
    code: int = 0
    body: bytes = b""
    body_sha256: str = ""
    request_id: str = ""
    request_at_ms: int = 0
    created_at: datetime | None = None

    def to_json(self) -> str:
        """Serialise the entry; the body is base64-encoded."""
        return json.dumps(
            {
                "in_progress": self.in_progress,
                "code": self.code,
                "body": base64.b64encode(self.body).decode("ascii"),
                "body_sha256": self.body_sha256,
                "request_id": self.request_id,
                "request_at_ms": self.request_at_ms,
                "created_at": self.created_at.isoformat() if self.created_at else None,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> IdempotencyEntry:
        """Parse an entry written by to_json; raise ValueError when malformed."""
        try:
            data = json.loads(raw)
            created = data.get("created_at")
            return cls(
                in_progress=bool(data.get("in_progress", False)),
                code=int(data.get("code", 0)),
                body=base64.b64decode(data.get("body") or ""),
                body_sha256=str(data.get("body_sha256", "")),
                request_id=str(data.get("request_id", "")),
                request_at_ms=int(data.get("request_at_ms", 0)),
                created_at=datetime.fromisoformat(created) if created else None,
            )
        except (AttributeError, TypeError, KeyError, ValueError) as exc:
            raise ValueError(f"malformed idempotency entry: {exc}") from exc


def body_hash(body: bytes) -> str:
    """Hex SHA-256 of a request body."""
    return hashlib.sha256(body).hexdigest()


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def build_key(method: str, path: str, borrower_id: str, request_id: str) -> str:
    """Redis key for one request: method, route, borrower and request id."""
    return f"idemp:ax:{method.lower()}:{path}:{borrower_id}:{request_id}"


def valid_request_id(value: str) -> bool:
    """Accept a lowercase UUID (versions 1-5) or 32 lowercase hex characters."""
    value = value.strip()
    return _UUID.fullmatch(value) is not None or _HEX32.fullmatch(value) is not None


def _parse_rfc3339(raw: str) -> datetime:
    match = _RFC3339.fullmatch(raw)
    if match is None:
        raise ValueError(_BAD_REQUEST_AT)
    year, month, day, hour, minute, second, frac, zone = match.groups()
    micro = int((frac or "")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            raise ValueError(_BAD_REQUEST_AT)
        offset = timedelta(hours=hours, minutes=minutes)
        tz = timezone(-offset if zone[0] == "-" else offset)
    parsed = datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )
    return parsed.astimezone(timezone.utc)


def parse_request_at(raw: str) -> datetime:
    """Parse epoch seconds, epoch milliseconds or RFC 3339 with a zone into UTC.

    Timestamps without a timezone are rejected with ValueError.
    """
    raw = raw.strip()
    if not raw:
        raise ValueError("missing Ax-Request-At")
    if _INTEGER.fullmatch(raw):
        n = int(raw)
        if _INT64_MIN <= n <= _INT64_MAX:
            try:
                if n > 10**12:
                    return _EPOCH + timedelta(milliseconds=n)
                return _EPOCH + timedelta(seconds=n)
            except OverflowError as exc:
                raise ValueError(_BAD_REQUEST_AT) from exc
    try:
        return _parse_rfc3339(raw)
    except (ValueError, OverflowError) as exc:
        raise ValueError(_BAD_REQUEST_AT) from exc


def _milliseconds(ttl: timedelta | float) -> int:
    if isinstance(ttl, timedelta):
        return int(ttl / timedelta(milliseconds=1))
    return int(ttl * 1000)


def _unix_ms(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def provisional_set(client: Any, key: str, entry: IdempotencyEntry) -> bool:
    """Store the in-progress entry only if the key is free; tell whether it was stored."""
    stored = client.set(key, entry.to_json(), nx=True, px=_milliseconds(PROVISIONAL_LOCK_TTL))
    return bool(stored)


def load_entry(client: Any, key: str) -> IdempotencyEntry | None:
    """Return the stored entry, None if absent, or an empty entry if unreadable."""
    raw = client.get(key)
    if raw is None:
        return None
    try:
        return IdempotencyEntry.from_json(raw)
    except ValueError:
        return IdempotencyEntry()


def save_final(client: Any, key: str, entry: IdempotencyEntry, ttl: timedelta | float) -> None:
    """Overwrite the key with the final entry; a non-positive ttl keeps it forever."""
    ms = _milliseconds(ttl)
    if ms > 0:
        client.set(key, entry.to_json(), px=ms)
    else:
        client.set(key, entry.to_json())


def _error(status: int, message: str) -> Response:
    response = jsonify(error=message)
    response.status_code = status
    return response


def install_idempotency(app: Flask, client: Any, ttl: timedelta | float) -> None:
    """Guard every mutating request of ``app`` with the Ax-* idempotency headers.

    ``ttl`` (seconds or timedelta) is how long a final response stays replayable.
    """

    def guard() -> Response | None:
        if request.method in _SAFE_METHODS:
            return None

        request_id = request.headers.get("Ax-Request-Id", "").strip()
        if not request_id:
            return _error(400, "missing Ax-Request-Id")
        if not valid_request_id(request_id):
            return _error(400, "invalid Ax-Request-Id format")

        try:
            request_at = parse_request_at(request.headers.get("Ax-Request-At", ""))
        except ValueError as exc:
            return _error(400, str(exc))
        now = now_utc()
        if request_at < now - MAX_CLOCK_SKEW or request_at > now + MAX_CLOCK_SKEW:
            return _error(400, "Ax-Request-At too skewed")

        borrower_id = request.headers.get("Ax-Borrower-Id", "").strip()
        if not borrower_id:
            return _error(400, "missing Ax-Borrower-Id")
        if _HEX32.fullmatch(borrower_id) is None:
            return _error(400, "invalid Ax-Borrower-Id")

        digest = body_hash(request.get_data(cache=True))
        path = request.url_rule.rule if request.url_rule is not None else request.path
        key = build_key(request.method, path, borrower_id, request_id)

        entry = IdempotencyEntry(
            in_progress=True,
            body_sha256=digest,
            request_id=request_id,
            request_at_ms=_unix_ms(request_at),
            created_at=now_utc(),
        )
        try:
            acquired = provisional_set(client, key, entry)
        except _STORE_ERRORS:
            return _error(503, "idempotency store unavailable")

        if not acquired:
            current: IdempotencyEntry | None
            try:
                current = load_entry(client, key)
            except _STORE_ERRORS as exc:
                logger.warning("failed to load idempotency entry %s: %s", key, exc)
                current = None
            current = current or IdempotencyEntry()
            if current.body_sha256 and current.body_sha256 != digest:
                return _error(409, "Ax-Request-Id reused with different body")
            if not current.in_progress and current.code and current.body:
                return Response(current.body, status=current.code, mimetype="application/json")
            return _error(409, "request is already in progress")

        setattr(g, _PENDING, (key, entry))
        return None

    def record(response: Response) -> Response:
        pending = g.pop(_PENDING, None)
        if pending is None:
            return response
        key, started = pending
        final = IdempotencyEntry(
            in_progress=False,
            code=response.status_code,
            body=response.get_data(),
            body_sha256=started.body_sha256,
            request_id=started.request_id,
            request_at_ms=started.request_at_ms,
            created_at=now_utc(),
        )
        try:
            save_final(client, key, final, ttl)
        except _STORE_ERRORS as exc:
            logger.warning("failed to save idempotency entry %s: %s", key, exc)
        return response

    app.before_request(guard)
    app.after_request(record)