"""Database models for the kid ledger.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent accounts, their immutable transactions, chore templates and
the chore instances generated from them.  Money columns are fixed-point
``Numeric(12, 2)``; timestamps are naive UTC in plain
``DateTime`` columns.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List
from datetime import datetime, date, timedelta

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, UniqueConstraint, event

from kidledger.clock import SystemClock
from kidledger.config import DEFAULT_TIMEZONE

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize a number to whole cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _utcnow() -> datetime:
    return SystemClock().now()


class TransactionKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class ChoreStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ChoreStatus.APPROVED, ChoreStatus.REJECTED, ChoreStatus.EXPIRED}
)


class RecurrenceType(str, Enum):
    ONE_TIME = "one_time"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Account(SQLModel, table=True):
    """Balance-holding account for one child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    balance: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    weekly_allowance: Decimal = Field(
        default=Decimal("0.00"), max_digits=12, decimal_places=2
    )
    last_allowance_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime
    )  # allowance anchor
    allowance_day: Optional[int] = None  # 0=Monday .. 6=Sunday
    allowance_paused: bool = False
    allowance_paused_reason: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    version: int = 1  # bumped by every unit of work on the account
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime)


class Transaction(SQLModel, table=True):
    """Immutable ledger entry with the balance snapshot after it applied."""

    __table_args__ = (
        UniqueConstraint("account_id", "source_ref", name="uq_transaction_source_ref"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    kind: TransactionKind
    description: str
    balance_after: Decimal = Field(max_digits=12, decimal_places=2)
    actor_id: str
    created_at: datetime = Field(
        default_factory=_utcnow, sa_type=DateTime, index=True
    )
    source_ref: Optional[str] = None  # e.g. "chore:12" or "allowance:3:2024-01-01"

    @property
    def signed_amount(self) -> Decimal:
        if self.kind == TransactionKind.CREDIT:
            return self.amount
        return -self.amount


class ChoreTemplate(SQLModel, table=True):
    """Recurrence rule that spawns chore instances for an account."""

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    title: str
    description: Optional[str] = None
    reward_amount: Decimal = Field(max_digits=12, decimal_places=2)
    recurrence_type: RecurrenceType = RecurrenceType.DAILY
    days_of_week: List[int] = Field(sa_column=Column(JSON), default_factory=list)
    day_of_month: Optional[int] = None
    active: bool = True
    last_generated_date: Optional[date] = None
    require_photo: bool = False
    auto_approve_after: Optional[timedelta] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime)


class ChoreInstance(SQLModel, table=True):
    """One concrete earn-task assigned to an account."""

    id: Optional[int] = Field(default=None, primary_key=True)
    template_id: Optional[int] = Field(
        default=None, foreign_key="choretemplate.id", index=True
    )
    account_id: int = Field(foreign_key="account.id", index=True)
    title: str
    description: Optional[str] = None
    reward_amount: Decimal = Field(max_digits=12, decimal_places=2)
    require_photo: bool = False
    due_date: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: ChoreStatus = Field(default=ChoreStatus.ASSIGNED, index=True)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    reviewer_id: Optional[str] = None
    review_notes: Optional[str] = None
    proof_ref: Optional[str] = None
    resulting_transaction_id: Optional[int] = Field(
        default=None, foreign_key="transaction.id"
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime)


class ImmutableTransactionError(RuntimeError):
    """Raised when code tries to change or remove a posted transaction."""


@event.listens_for(Transaction, "before_update")
def _block_transaction_update(mapper, connection, target):
    raise ImmutableTransactionError(
        f"Transaction {target.id} is immutable and cannot be updated"
    )


@event.listens_for(Transaction, "before_delete")
def _block_transaction_delete(mapper, connection, target):
    raise ImmutableTransactionError(
        f"Transaction {target.id} is immutable and cannot be deleted"
    )
