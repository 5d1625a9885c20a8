import dataclasses

import pytest

from loanservice.domain import (
    AlreadyApprovedError,
    Approval,
    ApprovalNotFoundError,
    DomainError,
    InvalidTransitionError,
    Loan,
    LoanNotFoundError,
    LoanState,
    RecordNotFoundError,
    Repos,
)


def test_loan_state_values():
    names = ["proposed", "approved", "invested", "disbursed", "rejected"]
    parsed = [LoanState(name) for name in names]
    assert parsed == [
        LoanState.PROPOSED,
        LoanState.APPROVED,
        LoanState.INVESTED,
        LoanState.DISBURSED,
        LoanState.REJECTED,
    ]
    assert [state.value for state in parsed] == names


def test_loan_state_parses_and_rejects():
    assert LoanState("approved") is LoanState.APPROVED
    assert LoanState.REJECTED == "rejected"
    with pytest.raises(ValueError):
        LoanState("bogus")


@pytest.mark.parametrize(
    "error_cls, message",
    [
        (LoanNotFoundError, "loan not found"),
        (InvalidTransitionError, "invalid state transition"),
        (AlreadyApprovedError, "loan already approved"),
        (ApprovalNotFoundError, "approval not found"),
    ],
)
def test_domain_error_messages(error_cls, message):
    err = error_cls()
    assert str(err) == message
    assert isinstance(err, DomainError)


def test_record_not_found_is_lookup_error_with_custom_message():
    err = RecordNotFoundError("no rows")
    assert str(err) == "no rows"
    assert isinstance(err, LookupError)


def test_loan_defaults_to_proposed():
    loan = Loan(loan_id="LN-1")
    assert loan.state is LoanState.PROPOSED
    assert loan.id == 0
    assert loan.created_at is None


def test_loan_replace_keeps_other_fields():
    loan = Loan(id=7, loan_id="LN-7", borrower_id="BR-1")
    approved = dataclasses.replace(loan, state=LoanState.APPROVED)
    assert approved.state is LoanState.APPROVED
    assert approved.loan_id == "LN-7"
    assert loan.state is LoanState.PROPOSED


def test_approval_fields():
    approval = Approval(approval_id="APR-1", loan_id=123)
    assert approval.loan_id == 123
    assert approval.deleted_by is None
    assert approval == Approval(approval_id="APR-1", loan_id=123)


def test_repos_holds_repositories():
    loans = object()
    approvals = object()
    repos = Repos(loans=loans, approvals=approvals)
    assert repos.loans is loans
    assert repos.approvals is approvals