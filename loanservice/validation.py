"""Rule-based request validation and readable field errors."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

__all__ = [
    "FieldError",
    "ErrorResponse",
    "FieldViolation",
    "ValidationFailed",
    "Validator",
    "to_field_errors",
    "contains_field_message",
]

_HEX32 = re.compile(r"[a-f0-9]{32}")
_EPSILON = 1e-9
_LAYOUT_PARTS = {"2006": "%Y", "01": "%m", "02": "%d", "15": "%H", "04": "%M", "05": "%S"}


@dataclass
class FieldError:
    """One readable validation problem."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ErrorResponse:
    """Error payload; details are left out when there are none."""

    error: str
    details: list[FieldError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.error}
        if self.details:
            out["details"] = [d.to_dict() for d in self.details]
        return out


@dataclass
class FieldViolation:
    """A rule that a field's value broke."""

    field: str
    tag: str
    param: str = ""
    value: Any = None


class ValidationFailed(ValueError):
    """Raised when one or more fields break their rules."""

    def __init__(self, violations: Iterable[FieldViolation]) -> None:
        self.violations = list(violations)
        super().__init__(
            "; ".join(f"field {v.field!r} failed on the {v.tag!r} rule" for v in self.violations)
        )


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _round_half_away(x: float) -> float:
    return math.copysign(math.floor(abs(x) + 0.5), x)


def _required(value: Any, _param: str) -> bool:
    if isinstance(value, (int, float, str, bytes, list, tuple, dict, set)) or value is None:
        return bool(value)
    return True


def _hex32(value: Any, _param: str) -> bool:
    return isinstance(value, str) and _HEX32.fullmatch(value) is not None


def _rounds_to(value: Any, scale: float) -> bool:
    f = _number(value)
    return (
        f is not None
        and math.isfinite(f)
        and abs(f - _round_half_away(f * scale) / scale) < _EPSILON
    )


def _measure(value: Any) -> float | None:
    return float(len(value)) if isinstance(value, str) else _number(value)


def _gte(value: Any, param: str) -> bool:
    measured = _measure(value)
    return measured is not None and measured >= float(param)


def _lte(value: Any, param: str) -> bool:
    measured = _measure(value)
    return measured is not None and measured <= float(param)


def _url(value: Any, _param: str) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        parts = urlsplit(value.lower())
    except ValueError:
        return False
    if not parts.scheme:
        return False
    return bool(parts.netloc or parts.fragment or (parts.path and not parts.path.startswith("/")))


def _datetime(value: Any, param: str) -> bool:
    if not isinstance(value, str):
        return False
    fmt = param.replace("%", "%%")
    for part, directive in _LAYOUT_PARTS.items():
        fmt = fmt.replace(part, directive)
    try:
        return datetime.strptime(value, fmt).strftime(fmt) == value
    except ValueError:
        return False


_CHECKS = {
    "required": _required,
    "hex32": _hex32,
    "intlike": lambda value, _param: _rounds_to(value, 1),
    "dec2": lambda value, _param: _rounds_to(value, 100),
    "gte": _gte,
    "lte": _lte,
    "url": _url,
    "datetime": _datetime,
}


class Validator:
    """Checks field values against comma-separated rule lists.

    Rules run in order for each field; the first broken rule is reported
    and the field's remaining rules are skipped.
    """

    def validate(self, values: Mapping[str, Any], rules: Mapping[str, str]) -> None:
        """Raise ValidationFailed listing each field that breaks a rule."""
        violations: list[FieldViolation] = []
        for name, spec in rules.items():
            value = values.get(name)
            for part in filter(None, (p.strip() for p in spec.split(","))):
                tag, _, param = part.partition("=")
                check = _CHECKS.get(tag)
                if check is None:
                    raise ValueError(f"undefined validation {tag!r} on field {name!r}")
                if not check(value, param):
                    violations.append(FieldViolation(name, tag, param, value))
                    break
        if violations:
            raise ValidationFailed(violations)


_MESSAGES = {
    "required": "is required",
    "hex32": "must be 32-char lowercase hex",
    "intlike": "must be an integer value",
    "dec2": "must have at most 2 decimal places",
    "gte": "must be greater than or equal to ",
    "lte": "must be less than or equal to ",
}


def to_field_errors(err: BaseException) -> list[FieldError]:
    """Turn a validation error into readable field errors."""
    if not isinstance(err, ValidationFailed):
        return [FieldError(field="_", message=str(err))]
    out = []
    for v in err.violations:
        if v.tag in ("gte", "lte"):
            message = _MESSAGES[v.tag] + v.param
        else:
            message = _MESSAGES.get(v.tag, v.tag + " validation failed")
        out.append(FieldError(field=v.field, message=message))
    return out


def contains_field_message(errors: Iterable[FieldError], field: str, substr: str) -> bool:
    """Tell whether some error for ``field`` has ``substr`` in its message."""
    return any(e.field == field and substr in e.message for e in errors)