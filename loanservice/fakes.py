"""Callable-backed stand-ins for the repositories and the unit of work."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .domain import Approval, Loan, Repos

__all__ = [
    "FakeNotConfiguredError",
    "UnimplementedError",
    "FakeLoanRepository",
    "FakeApprovalRepository",
    "FakeUnitOfWork",
]


class FakeNotConfiguredError(Exception):
    """Raised by a fake lookup that was given no behaviour."""


class UnimplementedError(Exception):
    """Raised by a fake unit of work whose method was given no behaviour."""


def _not_configured(name: str) -> FakeNotConfiguredError:
    return FakeNotConfiguredError(f"{name} is not configured")


@dataclass
class FakeLoanRepository:
    """Loan repository whose methods delegate to the given callables.

    Writes without a callable do nothing; lookups without one raise
    FakeNotConfiguredError.
    """

    create_fn: Callable[[Loan], None] | None = None
    get_by_loan_id_fn: Callable[[str], Loan] | None = None
    save_fn: Callable[[Loan], None] | None = None
    get_pending_loan_by_borrower_id_fn: Callable[[str], Loan] | None = None
    get_by_loan_id_for_update_fn: Callable[[str], Loan] | None = None

    def create(self, loan: Loan) -> None:
        if self.create_fn is not None:
            self.create_fn(loan)

    def get_by_loan_id(self, loan_id: str) -> Loan:
        if self.get_by_loan_id_fn is None:
            raise _not_configured("get_by_loan_id")
        return self.get_by_loan_id_fn(loan_id)

    def get_pending_loan_by_borrower_id(self, borrower_id: str) -> Loan:
        if self.get_pending_loan_by_borrower_id_fn is None:
            raise _not_configured("get_pending_loan_by_borrower_id")
        return self.get_pending_loan_by_borrower_id_fn(borrower_id)

    def save(self, loan: Loan) -> None:
        if self.save_fn is not None:
            self.save_fn(loan)

    def get_by_loan_id_for_update(self, loan_id: str) -> Loan:
        if self.get_by_loan_id_for_update_fn is None:
            raise _not_configured("get_by_loan_id_for_update")
        return self.get_by_loan_id_for_update_fn(loan_id)


@dataclass
class FakeApprovalRepository:
    """Approval repository whose methods delegate to the given callables."""

    create_fn: Callable[[Approval], None] | None = None
    get_by_loan_id_fn: Callable[[int], Approval] | None = None
    get_by_approval_id_fn: Callable[[str], Approval] | None = None

    def create(self, approval: Approval) -> None:
        if self.create_fn is not None:
            self.create_fn(approval)

    def get_by_loan_id(self, loan_pk: int) -> Approval:
        if self.get_by_loan_id_fn is None:
            raise _not_configured("get_by_loan_id")
        return self.get_by_loan_id_fn(loan_pk)

    def get_by_approval_id(self, approval_id: str) -> Approval:
        if self.get_by_approval_id_fn is None:
            raise _not_configured("get_by_approval_id")
        return self.get_by_approval_id_fn(approval_id)


WithinTxFn = Callable[[Callable[[Repos], Any]], Any]
WithinLoanTxFn = Callable[[str, Callable[[Repos, Loan], Any]], Any]


@dataclass
class FakeUnitOfWork:
    """Unit of work whose methods delegate to the given callables.

    Methods without a callable raise UnimplementedError.
    """

    within_tx_fn: WithinTxFn | None = None
    within_loan_tx_fn: WithinLoanTxFn | None = None

    def with_within_tx(self, fn: WithinTxFn) -> FakeUnitOfWork:
        self.within_tx_fn = fn
        return self

    def with_within_loan_tx(self, fn: WithinLoanTxFn) -> FakeUnitOfWork:
        self.within_loan_tx_fn = fn
        return self

    def reset(self) -> None:
        self.within_tx_fn = None
        self.within_loan_tx_fn = None

    def within_tx(self, fn: Callable[[Repos], Any]) -> Any:
        if self.within_tx_fn is None:
            raise UnimplementedError("within_tx: method not implemented")
        return self.within_tx_fn(fn)

    def within_loan_tx(self, loan_id: str, fn: Callable[[Repos, Loan], Any]) -> Any:
        if self.within_loan_tx_fn is None:
            raise UnimplementedError("within_loan_tx: method not implemented")
        return self.within_loan_tx_fn(loan_id, fn)