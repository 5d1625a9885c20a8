"""HTTP handlers for health checks, loans and approvals."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from flask import Response, jsonify, request

from .domain import AlreadyApprovedError, InvalidTransitionError, LoanNotFoundError
from .usecases import ApprovalUsecase, ApproveInput, CreateLoanInput, LoanUsecase
from .validation import ErrorResponse, FieldError, ValidationFailed, Validator, to_field_errors

__all__ = ["health", "LoanHandler", "ApprovalHandler"]

# (JSON key, field name, type) for each request body.
_LOAN_FIELDS = (
    ("borrower_id", "BorrowerID", str),
    ("principal", "Principal", float),
    ("rate", "Rate", float),
    ("roi", "ROI", float),
)
_LOAN_RULES = {
    "BorrowerID": "required,hex32",
    "Principal": "required,intlike,gte=5000000,lte=100000000",
    "Rate": "required,dec2,gte=1.29,lte=2.99",
    "ROI": "required,dec2,gte=0.90,lte=1.29",
}
_APPROVAL_FIELDS = (
    ("photo_url", "PhotoURL", str),
    ("validator_employee_id", "ValidatorEmployeeID", str),
    ("approval_date", "ApprovalDate", str),
)
_APPROVAL_RULES = {
    "PhotoURL": "required,url",
    "ValidatorEmployeeID": "required,hex32",
    "ApprovalDate": "required,datetime=2006-01-02",
}


class _BindError(ValueError):
    """The request body could not be read into the expected fields."""


def _json(status: int, payload: Any) -> Response:
    response = jsonify(payload)
    response.status_code = status
    return response


def _error(status: int, message: str, details: list[FieldError] | None = None) -> Response:
    return _json(status, ErrorResponse(error=message, details=details or []).to_dict())


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON value {name}")


def _bind(fields: tuple[tuple[str, str, type], ...]) -> dict[str, Any]:
    """Read the JSON body into zero-initialised fields; unknown keys are ignored."""
    values: dict[str, Any] = {name: kind() for _, name, kind in fields}
    raw = request.get_data(cache=True)
    if not raw:
        return values
    if request.mimetype != "application/json":
        raise _BindError("unsupported media type")
    try:
        payload = json.loads(raw, parse_constant=_reject_constant)
    except ValueError as exc:
        raise _BindError(str(exc)) from exc
    if payload is None:
        return values
    if not isinstance(payload, dict):
        raise _BindError("body must be a JSON object")
    by_key = {key.casefold(): (key, name, kind) for key, name, kind in fields}
    for key, value in payload.items():
        spec = by_key.get(key.casefold())
        if spec is None or value is None:
            continue
        _, name, kind = spec
        if kind is str and isinstance(value, str):
            values[name] = value
        elif kind is float and isinstance(value, (int, float)) and not isinstance(value, bool):
            values[name] = float(value)
        else:
            raise _BindError(f"cannot read {key} from {type(value).__name__}")
    return values


def _bind_and_validate(
    validator: Validator, fields: tuple[tuple[str, str, type], ...], rules: dict[str, str]
) -> dict[str, Any] | Response:
    try:
        values = _bind(fields)
    except _BindError:
        return _error(400, "invalid body")
    try:
        validator.validate(values, rules)
    except ValidationFailed as exc:
        return _error(422, "validation failed", to_field_errors(exc))
    return values


def health() -> Response:
    """Report liveness with the current UTC time."""
    now = datetime.now(timezone.utc)
    fraction = f"{now.microsecond:06d}".rstrip("0")
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S") + (f".{fraction}" if fraction else "") + "Z"
    return _json(200, {"status": "ok", "time": stamp})


class LoanHandler:
    """Endpoints that create and read loans."""

    def __init__(self, usecase: LoanUsecase, validator: Validator | None = None) -> None:
        self._usecase = usecase
        self._validator = validator or Validator()

    def create_loan(self) -> Response:
        values = _bind_and_validate(self._validator, _LOAN_FIELDS, _LOAN_RULES)
        if isinstance(values, Response):
            return values
        try:
            dto = self._usecase.create(
                CreateLoanInput(
                    borrower_id=values["BorrowerID"],
                    principal=values["Principal"],
                    rate=values["Rate"],
                    roi=values["ROI"],
                )
            )
        except Exception as exc:
            return _json(400, {"error": str(exc)})
        return _json(201, dto.to_dict())

    def get_loan(self, loan_id: str) -> Response:
        try:
            dto = self._usecase.get(loan_id)
        except Exception:
            return _json(404, {"error": "not found"})
        return _json(200, dto.to_dict())


class ApprovalHandler:
    """Endpoint that approves a proposed loan."""

    def __init__(self, usecase: ApprovalUsecase, validator: Validator | None = None) -> None:
        self._usecase = usecase
        self._validator = validator or Validator()

    def approve_loan(self, loan_id: str) -> Response:
        if not loan_id:
            return _error(400, "missing loan_id path param")
        values = _bind_and_validate(self._validator, _APPROVAL_FIELDS, _APPROVAL_RULES)
        if isinstance(values, Response):
            return values
        try:
            approval_date = datetime.strptime(values["ApprovalDate"], "%Y-%m-%d").replace(
                tzinfo=timezone.utc
            )
        except ValueError:
            return _error(422, "validation failed", [FieldError("ApprovalDate", "must be YYYY-MM-DD")])

        try:
            dto = self._usecase.approve(
                ApproveInput(
                    loan_id=loan_id,
                    photo_url=values["PhotoURL"],
                    validator_employee_id=values["ValidatorEmployeeID"],
                    approval_date=approval_date,
                )
            )
        except LoanNotFoundError:
            return _error(404, "loan not found")
        except AlreadyApprovedError:
            return _error(409, "loan already approved")
        except InvalidTransitionError:
            return _error(409, "loan not in a state that can be approved")
        except Exception as exc:
            return _error(400, str(exc))
        return _json(200, dto.to_dict())