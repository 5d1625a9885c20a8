"""Loan and approval entities, domain errors and repository contracts."""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, TypeVar

__all__ = [
    "LoanState",
    "Loan",
    "Approval",
    "Repos",
    "DomainError",
    "LoanNotFoundError",
    "InvalidTransitionError",
    "AlreadyApprovedError",
    "ApprovalNotFoundError",
    "RecordNotFoundError",
    "LoanRepository",
    "ApprovalRepository",
    "UnitOfWork",
]

T = TypeVar("T")


class LoanState(str, enum.Enum):
    """Lifecycle states of a loan."""

    PROPOSED = "proposed"
    APPROVED = "approved"
    INVESTED = "invested"
    DISBURSED = "disbursed"
    REJECTED = "rejected"


class DomainError(Exception):
    """Base class for business-rule errors."""

    default_message = "domain error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class LoanNotFoundError(DomainError):
    default_message = "loan not found"


class InvalidTransitionError(DomainError):
    default_message = "invalid state transition"


class AlreadyApprovedError(DomainError):
    default_message = "loan already approved"


class ApprovalNotFoundError(DomainError):
    default_message = "approval not found"


class RecordNotFoundError(DomainError, LookupError):
    """Raised by repositories when a query matches no row."""

    default_message = "record not found"


@dataclass
class Loan:
    """A loan row; ``id`` is the internal key, ``loan_id`` the public one."""

    id: int = 0
    loan_id: str = ""
    borrower_id: str = ""
    principal: float = 0.0
    rate: float = 0.0
    roi: float = 0.0
    agreement_link: str = ""
    state: LoanState = LoanState.PROPOSED
    state_updated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    deleted_by: str = ""


@dataclass
class Approval:
    """An approval row; ``loan_id`` refers to the loan's internal ``id``."""

    id: int = 0
    approval_id: str = ""
    loan_id: int = 0
    photo_url: str = ""
    validator_employee_id: str = ""
    approval_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None


class LoanRepository(Protocol):
    """Storage for loans."""

    def create(self, loan: Loan) -> None:
        """Insert a loan, filling in generated columns."""

    def get_by_loan_id(self, loan_id: str) -> Loan:
        """Return the loan with this public id or raise RecordNotFoundError."""

    def get_pending_loan_by_borrower_id(self, borrower_id: str) -> Loan:
        """Return the newest proposed loan of a borrower or raise RecordNotFoundError."""

    def save(self, loan: Loan) -> None:
        """Persist every column of an existing loan."""

    def get_by_loan_id_for_update(self, loan_id: str) -> Loan:
        """Like get_by_loan_id, locking the row for the running transaction."""


class ApprovalRepository(Protocol):
    """Storage for approvals."""

    def create(self, approval: Approval) -> None:
        """Insert an approval; at most one exists per loan."""

    def get_by_loan_id(self, loan_pk: int) -> Approval:
        """Return the approval of a loan by its internal id or raise RecordNotFoundError."""

    def get_by_approval_id(self, approval_id: str) -> Approval:
        """Return the approval with this public id or raise RecordNotFoundError."""


@dataclass
class Repos:
    """Repositories bound to one transaction."""

    loans: LoanRepository
    approvals: ApprovalRepository


class UnitOfWork(Protocol):
    """Runs work inside a single transaction."""

    def within_tx(self, fn: Callable[[Repos], T]) -> T:
        """Call ``fn`` with transaction-bound repositories; roll back if it raises."""

    def within_loan_tx(self, loan_id: str, fn: Callable[[Repos, Loan], T]) -> T:
        """Lock the loan first, then call ``fn`` with the repositories and the loan."""