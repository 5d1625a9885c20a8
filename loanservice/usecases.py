"""Application use cases: creating, reading and approving loans."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

from .domain import (
    AlreadyApprovedError,
    Approval,
    ApprovalRepository,
    InvalidTransitionError,
    Loan,
    LoanNotFoundError,
    LoanRepository,
    LoanState,
    RecordNotFoundError,
    Repos,
    UnitOfWork,
)
from .ids import new_id32

__all__ = [
    "InvalidInputError",
    "PendingLoanError",
    "CreateLoanInput",
    "LoanDTO",
    "ApproveInput",
    "ApprovalDTO",
    "LoanUsecase",
    "ApprovalUsecase",
]

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Raised when a loan request fails the use case's own checks."""

    def __init__(self, message: str = "invalid input") -> None:
        super().__init__(message)


class PendingLoanError(Exception):
    """Raised when a borrower already has a proposed loan."""

    def __init__(self, borrower_id: str, loan_id: str) -> None:
        super().__init__(f"borrower {borrower_id} already has a pending loan: {loan_id}")
        self.borrower_id = borrower_id
        self.loan_id = loan_id


def _as_utc(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time(), tzinfo=timezone.utc)


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _as_utc(value).isoformat().replace("+00:00", "Z")


@dataclass
class CreateLoanInput:
    """Data needed to propose a loan."""

    borrower_id: str
    principal: float
    rate: float
    roi: float


@dataclass
class LoanDTO:
    """Public view of a loan."""

    loan_id: str
    borrower_id: str
    principal: float
    rate: float
    roi: float
    state: str
    created_at: datetime | None = None

    @classmethod
    def from_loan(cls, loan: Loan) -> LoanDTO:
        return cls(
            loan_id=loan.loan_id,
            borrower_id=loan.borrower_id,
            principal=loan.principal,
            rate=loan.rate,
            roi=loan.roi,
            state=LoanState(loan.state).value,
            created_at=loan.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation."""
        return {
            "loan_id": self.loan_id,
            "borrower_id": self.borrower_id,
            "principal": self.principal,
            "rate": self.rate,
            "roi": self.roi,
            "state": self.state,
            "created_at": _format_time(self.created_at),
        }


@dataclass
class ApproveInput:
    """Data needed to approve a loan."""

    loan_id: str
    photo_url: str
    validator_employee_id: str
    approval_date: datetime | date


@dataclass
class ApprovalDTO:
    """Public view of an approval."""

    approval_id: str
    loan_id: str
    photo_url: str
    approved_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready representation."""
        return {
            "approval_id": self.approval_id,
            "loan_id": self.loan_id,
            "photo_url": self.photo_url,
            "approved_at": _format_time(self.approved_at),
        }


class LoanUsecase:
    """Creates and reads loans."""

    def __init__(self, repo: LoanRepository) -> None:
        self._repo = repo

    def create(self, data: CreateLoanInput) -> LoanDTO:
        """Propose a new loan unless the borrower already has a pending one."""
        if not data.borrower_id or len(data.borrower_id) != 32 or data.principal <= 0:
            raise InvalidInputError()

        try:
            pending = self._repo.get_pending_loan_by_borrower_id(data.borrower_id)
        except RecordNotFoundError:
            pass
        else:
            raise PendingLoanError(data.borrower_id, pending.loan_id)

        loan = Loan(
            loan_id=new_id32(),
            borrower_id=data.borrower_id,
            principal=data.principal,
            rate=data.rate,
            roi=data.roi,
            state=LoanState.PROPOSED,
            state_updated_at=datetime.now(timezone.utc),
        )
        self._repo.create(loan)
        return LoanDTO.from_loan(loan)

    def get(self, loan_id: str) -> LoanDTO:
        """Return the loan with this public id; repository errors propagate."""
        return LoanDTO.from_loan(self._repo.get_by_loan_id(loan_id))


class ApprovalUsecase:
    """Moves proposed loans to the approved state."""

    def __init__(
        self,
        loans: LoanRepository | None,
        approvals: ApprovalRepository | None,
        uow: UnitOfWork | None,
    ) -> None:
        self._loans = loans
        self._approvals = approvals
        self._uow = uow

    def approve(self, data: ApproveInput) -> ApprovalDTO:
        """Record an approval and mark the loan approved, in one transaction."""
        if self._uow is None:
            raise InvalidTransitionError()

        def work(repos: Repos) -> ApprovalDTO:
            try:
                loan = repos.loans.get_by_loan_id_for_update(data.loan_id)
            except Exception as exc:
                raise LoanNotFoundError() from exc

            if loan.state != LoanState.PROPOSED:
                if loan.state == LoanState.APPROVED:
                    raise AlreadyApprovedError()
                raise InvalidTransitionError()

            try:
                repos.approvals.get_by_loan_id(loan.id)
            except RecordNotFoundError as exc:
                logger.debug("no approval yet for loan %s: %s", loan.loan_id, exc)
            else:
                raise AlreadyApprovedError()

            approval = Approval(
                approval_id=new_id32(),
                loan_id=loan.id,
                photo_url=data.photo_url,
                validator_employee_id=data.validator_employee_id,
                approval_date=_as_utc(data.approval_date),
            )
            repos.approvals.create(approval)

            loan.state = LoanState.APPROVED
            loan.state_updated_at = datetime.now(timezone.utc)
            repos.loans.save(loan)

            return ApprovalDTO(
                approval_id=approval.approval_id,
                loan_id=loan.loan_id,
                photo_url=approval.photo_url,
                approved_at=approval.approval_date,
            )

        return self._uow.within_tx(work)