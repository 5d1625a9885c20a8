"""SQL-backed loan and approval repositories and the unit of work that binds them."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine

from .domain import Approval, Loan, LoanState, RecordNotFoundError, Repos

__all__ = [
    "SqlLoanRepository",
    "SqlApprovalRepository",
    "SqlUnitOfWork",
    "create_schema",
    "metadata",
    "loans_table",
    "approvals_table",
]

T = TypeVar("T")


class _UTCDateTime(sa.types.TypeDecorator):
    """Stores naive UTC timestamps and hands back aware UTC datetimes."""

    impl = sa.DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", _UTCDateTime()),
        sa.Column("updated_at", _UTCDateTime()),
        sa.Column("deleted_at", _UTCDateTime(), index=True),
        sa.Column("deleted_by", sa.String(32)),
    ]


metadata = sa.MetaData()

loans_table = sa.Table(
    "loans",
    metadata,
    sa.Column("id", _ID, primary_key=True, autoincrement=True),
    sa.Column("loan_id", sa.String(32), nullable=False),
    sa.Column("borrower_id", sa.String(32), nullable=False),
    sa.Column("principal", sa.Numeric(18, 2, asdecimal=False), nullable=False, default=0),
    sa.Column("rate", sa.Numeric(6, 4, asdecimal=False), nullable=False, default=0),
    sa.Column("roi", sa.Numeric(6, 4, asdecimal=False), nullable=False, default=0),
    sa.Column("agreement_link", sa.Text),
    sa.Column(
        "state",
        sa.Enum(*(s.value for s in LoanState), name="loan_state"),
        nullable=False,
        default=LoanState.PROPOSED.value,
    ),
    sa.Column("state_updated_at", _UTCDateTime()),
    *_audit_columns(),
    sa.Index("ux_loans_loan_id_active", "loan_id", unique=True),
    sa.Index("idx_loans_borrower_active", "borrower_id"),
)

approvals_table = sa.Table(
    "approvals",
    metadata,
    sa.Column("id", _ID, primary_key=True, autoincrement=True),
    sa.Column("approval_id", sa.String(32), nullable=False),
    sa.Column("loan_id", _ID, nullable=False),
    sa.Column("photo_url", sa.Text, nullable=False),
    sa.Column("validator_employee_id", sa.String(32), nullable=False),
    sa.Column("approval_date", _UTCDateTime(), nullable=False),
    *_audit_columns(),
    sa.Index("ux_approvals_approval_id_active", "approval_id", unique=True),
    sa.Index("ux_approvals_loan_active", "loan_id", unique=True),
)


def create_schema(engine: Engine) -> None:
    """Create the loans and approvals tables if they do not exist."""
    metadata.create_all(engine)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _SqlRepository:
    """Runs statements on an engine (one transaction each) or on a bound connection."""

    table: sa.Table

    def __init__(self, bind: Engine | Connection) -> None:
        self._bind = bind

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if isinstance(self._bind, Connection):
            yield self._bind
        else:
            with self._bind.begin() as conn:
                yield conn

    def _run_tx(self, fn: Callable[[Any], T]) -> T:
        if isinstance(self._bind, Connection):
            with self._bind.begin_nested():
                return fn(type(self)(self._bind))
        with self._bind.begin() as conn:
            return fn(type(self)(conn))

    def _values(self, obj: Any) -> dict[str, Any]:
        return {c.name: getattr(obj, c.name) for c in self.table.c}

    def _insert(self, obj: Any) -> None:
        now = _now()
        obj.created_at = obj.created_at or now
        obj.updated_at = obj.updated_at or now
        values = self._values(obj)
        if not obj.id:
            del values["id"]
        with self._connection() as conn:
            result = conn.execute(self.table.insert().values(**values))
        if not obj.id:
            obj.id = result.inserted_primary_key[0]

    def _first(self, *conditions: Any, order_by: Any = None, for_update: bool = False) -> Mapping[str, Any]:
        query = (
            sa.select(self.table)
            .where(self.table.c.deleted_at.is_(None), *conditions)
            .order_by(*(order_by if order_by is not None else [self.table.c.id]))
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        with self._connection() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            raise RecordNotFoundError()
        return row


def _row_to_loan(row: Mapping[str, Any]) -> Loan:
    return Loan(
        **{
            **row,
            "state": LoanState(row["state"]),
            "agreement_link": row["agreement_link"] or "",
            "deleted_by": row["deleted_by"] or "",
        }
    )


class SqlLoanRepository(_SqlRepository):
    """Loan storage on the ``loans`` table; soft-deleted rows are never returned."""

    table = loans_table

    def tx(self, fn: Callable[[SqlLoanRepository], T]) -> T:
        """Call ``fn`` with a repository bound to a transaction; roll back if it raises."""
        return self._run_tx(fn)

    def _values(self, obj: Any) -> dict[str, Any]:
        values = super()._values(obj)
        values["state"] = LoanState(obj.state).value
        return values

    def create(self, loan: Loan) -> None:
        """Insert a loan, filling in its id and unset timestamps."""
        loan.state_updated_at = loan.state_updated_at or _now()
        self._insert(loan)

    def save(self, loan: Loan) -> None:
        """Write every column of the loan; insert it when it has no row yet."""
        if not loan.id:
            self.create(loan)
            return
        loan.updated_at = _now()
        values = self._values(loan)
        changes = {k: v for k, v in values.items() if k != "id"}
        with self._connection() as conn:
            result = conn.execute(self.table.update().where(self.table.c.id == loan.id).values(**changes))
            if result.rowcount == 0:
                conn.execute(self.table.insert().values(**values))

    def get_by_loan_id(self, loan_id: str) -> Loan:
        return _row_to_loan(self._first(self.table.c.loan_id == loan_id))

    def get_pending_loan_by_borrower_id(self, borrower_id: str) -> Loan:
        c = self.table.c
        return _row_to_loan(
            self._first(
                c.borrower_id == borrower_id,
                c.state == LoanState.PROPOSED.value,
                order_by=[c.state_updated_at.desc(), c.id.desc()],
            )
        )

    def get_by_loan_id_for_update(self, loan_id: str) -> Loan:
        return _row_to_loan(self._first(self.table.c.loan_id == loan_id, for_update=True))


class SqlApprovalRepository(_SqlRepository):
    """Approval storage on the ``approvals`` table; soft-deleted rows are never returned."""

    table = approvals_table

    def tx(self, fn: Callable[[SqlApprovalRepository], T]) -> T:
        """Call ``fn`` with a repository bound to a transaction; roll back if it raises."""
        return self._run_tx(fn)

    def create(self, approval: Approval) -> None:
        """Insert an approval, filling in its id and unset timestamps."""
        self._insert(approval)

    def get_by_loan_id(self, loan_pk: int) -> Approval:
        return Approval(**self._first(self.table.c.loan_id == loan_pk))

    def get_by_approval_id(self, approval_id: str) -> Approval:
        return Approval(**self._first(self.table.c.approval_id == approval_id))


class SqlUnitOfWork:
    """Runs work in one database transaction with repositories bound to it."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def within_tx(self, fn: Callable[[Repos], T]) -> T:
        with self._engine.begin() as conn:
            return fn(Repos(loans=SqlLoanRepository(conn), approvals=SqlApprovalRepository(conn)))

    def within_loan_tx(self, loan_id: str, fn: Callable[[Repos, Loan], T]) -> T:
        with self._engine.begin() as conn:
            repos = Repos(loans=SqlLoanRepository(conn), approvals=SqlApprovalRepository(conn))
            return fn(repos, repos.loans.get_by_loan_id_for_update(loan_id))