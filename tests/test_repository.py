from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from loanservice.domain import Approval, Loan, LoanState, RecordNotFoundError
from loanservice.ids import new_id32
from loanservice.repository import (
    SqlApprovalRepository,
    SqlLoanRepository,
    SqlUnitOfWork,
    create_schema,
)


class Boom(Exception):
    pass


@pytest.fixture
def engine():
    eng = sa.create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    create_schema(eng)
    yield eng
    eng.dispose()


def make_loan(loan_id, borrower_id, **overrides):
    values = dict(
        loan_id=loan_id,
        borrower_id=borrower_id,
        principal=1_000_000.00,
        rate=0.22,
        roi=0.18,
        state=LoanState.PROPOSED,
        state_updated_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return Loan(**values)


def make_approval(approval_id, loan_pk, when):
    return Approval(
        approval_id=approval_id,
        loan_id=loan_pk,
        photo_url="https://example.com/a.jpg",
        validator_employee_id="EMP-1",
        approval_date=when.astimezone(timezone.utc),
    )


# ---- loans ----


def test_create_and_get_by_loan_id(engine):
    repo = SqlLoanRepository(engine)
    loan_id, borrower = new_id32(), new_id32()
    loan = make_loan(loan_id, borrower)
    repo.create(loan)
    assert loan.id > 0

    got = repo.get_by_loan_id(loan_id)
    assert got.loan_id == loan_id
    assert got.borrower_id == borrower
    assert got.principal == 1_000_000.00
    assert got.state is LoanState.PROPOSED


def test_save_updates(engine):
    repo = SqlLoanRepository(engine)
    loan_id = new_id32()
    loan = make_loan(loan_id, "d" * 32)
    repo.create(loan)

    link = "https://example.com/agreement.pdf"
    loan.agreement_link = link
    repo.save(loan)

    assert repo.get_by_loan_id(loan_id).agreement_link == link


def test_save_without_id_inserts(engine):
    repo = SqlLoanRepository(engine)
    loan = make_loan("f" * 32, "d" * 32)
    repo.save(loan)
    assert loan.id > 0
    assert repo.get_by_loan_id("f" * 32).id == loan.id


def test_get_by_loan_id_not_found(engine):
    repo = SqlLoanRepository(engine)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_loan_id("e" * 32)


def test_soft_deleted_loan_is_hidden(engine):
    repo = SqlLoanRepository(engine)
    loan = make_loan("9" * 32, "d" * 32)
    repo.create(loan)
    loan.deleted_at = datetime.now(timezone.utc)
    repo.save(loan)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_loan_id("9" * 32)


def test_get_pending_loan_by_borrower_id(engine):
    repo = SqlLoanRepository(engine)
    b1 = "b" * 32
    now = datetime.now(timezone.utc)

    repo.create(make_loan("a" * 32, b1, state=LoanState.APPROVED,
                          state_updated_at=now - timedelta(hours=3)))
    repo.create(make_loan("c" * 32, b1, principal=1_500_000,
                          state_updated_at=now - timedelta(hours=2)))
    want_id = "d" * 32
    repo.create(make_loan(want_id, b1, principal=2_000_000, rate=0.24, roi=0.19,
                          state_updated_at=now - timedelta(hours=1)))

    got = repo.get_pending_loan_by_borrower_id(b1)
    assert got.loan_id == want_id
    assert got.state is LoanState.PROPOSED

    with pytest.raises(RecordNotFoundError):
        repo.get_pending_loan_by_borrower_id("c" * 32)


def test_get_by_loan_id_for_update(engine):
    repo = SqlLoanRepository(engine)
    repo.create(make_loan("1" * 32, "b" * 32))
    assert repo.get_by_loan_id_for_update("1" * 32).loan_id == "1" * 32
    with pytest.raises(RecordNotFoundError):
        repo.get_by_loan_id_for_update("2" * 32)


def test_loan_tx_commit(engine):
    repo = SqlLoanRepository(engine)
    loan_id = new_id32()
    repo.tx(lambda r: r.create(make_loan(loan_id, "1" * 32)))
    assert repo.get_by_loan_id(loan_id).loan_id == loan_id


def test_loan_tx_rollback(engine):
    repo = SqlLoanRepository(engine)
    loan_id = new_id32()

    def work(r):
        r.create(make_loan(loan_id, "2" * 32))
        raise Boom()

    with pytest.raises(Boom):
        repo.tx(work)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_loan_id(loan_id)


# ---- approvals ----


def test_approval_create_and_get(engine):
    repo = SqlApprovalRepository(engine)
    now = datetime.now(timezone.utc)
    repo.create(make_approval("APR-001", 777, now))

    by_loan = repo.get_by_loan_id(777)
    assert by_loan.approval_id == "APR-001"
    assert by_loan.loan_id == 777
    assert by_loan.approval_date == now

    by_id = repo.get_by_approval_id("APR-001")
    assert by_id.loan_id == 777
    assert by_id.approval_id == "APR-001"


def test_approval_not_found(engine):
    repo = SqlApprovalRepository(engine)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_loan_id(999)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_approval_id("NOPE")


def test_approval_tx_commit(engine):
    repo = SqlApprovalRepository(engine)
    repo.tx(lambda r: r.create(make_approval("APR-COMMIT", 123, datetime.now(timezone.utc))))
    assert repo.get_by_approval_id("APR-COMMIT").loan_id == 123


def test_approval_tx_rollback(engine):
    repo = SqlApprovalRepository(engine)

    def work(r):
        r.create(make_approval("APR-ROLL", 456, datetime.now(timezone.utc)))
        raise Boom()

    with pytest.raises(Boom):
        repo.tx(work)
    with pytest.raises(RecordNotFoundError):
        repo.get_by_approval_id("APR-ROLL")


# ---- unit of work ----


def test_uow_within_tx_commit(engine):
    uow = SqlUnitOfWork(engine)
    loans = SqlLoanRepository(engine)
    approvals = SqlApprovalRepository(engine)
    created = []

    def work(repos):
        loan = make_loan("LN-COMMIT", "BR-1")
        repos.loans.create(loan)
        created.append(loan.id)
        repos.approvals.create(make_approval("APR-COMMIT", loan.id, datetime.now(timezone.utc)))
        return "done"

    assert uow.within_tx(work) == "done"
    assert created[0] > 0
    assert loans.get_by_loan_id("LN-COMMIT").id == created[0]
    assert approvals.get_by_approval_id("APR-COMMIT").loan_id == created[0]


def test_uow_within_tx_rollback(engine):
    uow = SqlUnitOfWork(engine)
    loans = SqlLoanRepository(engine)
    approvals = SqlApprovalRepository(engine)

    def work(repos):
        loan = make_loan("LN-ROLL", "BR-2")
        repos.loans.create(loan)
        repos.approvals.create(make_approval("APR-ROLL", loan.id, datetime.now(timezone.utc)))
        raise Boom()

    with pytest.raises(Boom):
        uow.within_tx(work)
    with pytest.raises(RecordNotFoundError):
        loans.get_by_loan_id("LN-ROLL")
    with pytest.raises(RecordNotFoundError):
        approvals.get_by_approval_id("APR-ROLL")


def test_uow_within_loan_tx_commit(engine):
    uow = SqlUnitOfWork(engine)
    loans = SqlLoanRepository(engine)
    approvals = SqlApprovalRepository(engine)
    loans.create(make_loan("LN-TARGET", "BR-3", principal=2_000_000, rate=0.24, roi=0.19,
                           state_updated_at=datetime.now(timezone.utc) - timedelta(hours=1)))
    seen = []

    def work(repos, loan):
        seen.append((loan.loan_id, loan.state))
        repos.approvals.create(make_approval("APR-LOCK", loan.id, datetime.now(timezone.utc)))
        loan.state = LoanState.APPROVED
        loan.state_updated_at = datetime.now(timezone.utc)
        repos.loans.save(loan)

    uow.within_loan_tx("LN-TARGET", work)

    assert seen == [("LN-TARGET", LoanState.PROPOSED)]
    assert loans.get_by_loan_id("LN-TARGET").state is LoanState.APPROVED
    assert approvals.get_by_approval_id("APR-LOCK").approval_id == "APR-LOCK"


def test_uow_within_loan_tx_rollback(engine):
    uow = SqlUnitOfWork(engine)
    loans = SqlLoanRepository(engine)
    approvals = SqlApprovalRepository(engine)
    loans.create(make_loan("LN-RB-TGT", "BR-4", principal=3_000_000, rate=0.25, roi=0.20))

    def work(repos, loan):
        repos.approvals.create(make_approval("APR-RB", loan.id, datetime.now(timezone.utc)))
        loan.state = LoanState.APPROVED
        repos.loans.save(loan)
        raise Boom()

    with pytest.raises(Boom):
        uow.within_loan_tx("LN-RB-TGT", work)
    assert loans.get_by_loan_id("LN-RB-TGT").state is LoanState.PROPOSED
    with pytest.raises(RecordNotFoundError):
        approvals.get_by_approval_id("APR-RB")


def test_uow_within_loan_tx_loan_not_found(engine):
    uow = SqlUnitOfWork(engine)
    calls = []
    with pytest.raises(RecordNotFoundError):
        uow.within_loan_tx("LN-NOPE", lambda repos, loan: calls.append(loan))
    assert calls == []