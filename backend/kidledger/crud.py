"""Asynchronous store helpers for the ledger models.

Each function in this module encapsulates a single database operation
using SQLModel and SQLAlchemy.  Unlike request-scoped helpers these never
commit: the engine classes own the transaction boundary so that a
transaction insert, a balance update and any workflow fields land in one
commit.  Writers ``flush`` so generated ids are available immediately.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select

from kidledger.models import (
    Account,
    Transaction,
    TransactionKind,
    ChoreTemplate,
    ChoreInstance,
    ChoreStatus,
    TERMINAL_STATUSES,
)


# --- Account helpers ------------------------------------------------------


async def add_account(db: AsyncSession, account: Account) -> Account:
    """Stage a new account and populate its id."""
    db.add(account)
    await db.flush()
    return account


async def get_account(
    db: AsyncSession, account_id: int, for_update: bool = False
) -> Account | None:
    """Return an account by id, optionally locking the row."""
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_all_accounts(db: AsyncSession) -> list[Account]:
    result = await db.execute(select(Account).order_by(Account.id))
    return result.scalars().all()


async def claim_account_version(db: AsyncSession, account: Account) -> bool:
    """Bump the account's version if nobody else has since it was read.

    Returns ``False`` when the row changed underneath us, which the caller
    treats as an optimistic-lock failure.
    """
    result = await db.execute(
        update(Account)
        .where(Account.id == account.id, Account.version == account.version)
        .values(version=Account.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    set_committed_value(account, "version", account.version + 1)
    return True


# --- Transaction helpers --------------------------------------------------


async def add_transaction(db: AsyncSession, tx: Transaction) -> Transaction:
    """Stage a ledger transaction.  There is no update or delete helper."""
    db.add(tx)
    await db.flush()
    return tx


async def get_transaction(db: AsyncSession, transaction_id: int) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(Transaction.id == transaction_id)
    )
    return result.scalar_one_or_none()


async def get_transaction_by_source(
    db: AsyncSession, account_id: int, source_ref: str
) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(
            Transaction.account_id == account_id,
            Transaction.source_ref == source_ref,
        )
    )
    return result.scalar_one_or_none()


async def get_latest_transaction(
    db: AsyncSession, account_id: int
) -> Transaction | None:
    """Return the most recent transaction by ``(created_at, id)``."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_transactions_by_account(
    db: AsyncSession,
    account_id: int,
    kind: Optional[TransactionKind] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    newest_first: bool = True,
) -> list[Transaction]:
    """Return an account's transactions, newest first unless asked otherwise."""

    stmt = select(Transaction).where(Transaction.account_id == account_id)
    if kind is not None:
        stmt = stmt.where(Transaction.kind == kind)
    if since is not None:
        stmt = stmt.where(Transaction.created_at >= since)
    if until is not None:
        stmt = stmt.where(Transaction.created_at < until)
    if newest_first:
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    else:
        stmt = stmt.order_by(Transaction.created_at, Transaction.id)
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


# --- Chore template helpers -----------------------------------------------


async def add_template(db: AsyncSession, template: ChoreTemplate) -> ChoreTemplate:
    db.add(template)
    await db.flush()
    return template


async def get_template(db: AsyncSession, template_id: int) -> ChoreTemplate | None:
    result = await db.execute(
        select(ChoreTemplate).where(ChoreTemplate.id == template_id)
    )
    return result.scalar_one_or_none()


async def get_templates_by_account(
    db: AsyncSession, account_id: int, include_inactive: bool = True
) -> list[ChoreTemplate]:
    stmt = select(ChoreTemplate).where(ChoreTemplate.account_id == account_id)
    if not include_inactive:
        stmt = stmt.where(ChoreTemplate.active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(ChoreTemplate.id))
    return result.scalars().all()


async def get_active_templates_with_timezone(
    db: AsyncSession,
) -> list[tuple[ChoreTemplate, str]]:
    """Return every active template paired with its account's timezone."""
    result = await db.execute(
        select(ChoreTemplate, Account.timezone)
        .join(Account, Account.id == ChoreTemplate.account_id)
        .where(ChoreTemplate.active == True)  # noqa: E712
        .order_by(ChoreTemplate.id)
    )
    return [(template, tz) for template, tz in result.all()]


async def claim_template_day(
    db: AsyncSession, template_id: int, today: date, once: bool = False
) -> bool:
    """Advance ``last_generated_date`` to ``today`` if it has not been yet.

    With ``once`` the template is only claimable while it has never
    generated.  Exactly one concurrent caller wins the claim.
    """
    if once:
        not_yet = ChoreTemplate.last_generated_date.is_(None)
    else:
        not_yet = or_(
            ChoreTemplate.last_generated_date.is_(None),
            ChoreTemplate.last_generated_date < today,
        )
    result = await db.execute(
        update(ChoreTemplate)
        .where(
            ChoreTemplate.id == template_id,
            ChoreTemplate.active == True,  # noqa: E712
            not_yet,
        )
        .values(last_generated_date=today)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# --- Chore instance helpers -----------------------------------------------


async def add_chore_instance(
    db: AsyncSession, instance: ChoreInstance
) -> ChoreInstance:
    db.add(instance)
    await db.flush()
    return instance


async def get_chore_instance(
    db: AsyncSession, instance_id: int
) -> ChoreInstance | None:
    result = await db.execute(
        select(ChoreInstance).where(ChoreInstance.id == instance_id)
    )
    return result.scalar_one_or_none()


async def get_chore_instances_by_account(
    db: AsyncSession, account_id: int, status: Optional[ChoreStatus] = None
) -> list[ChoreInstance]:
    stmt = select(ChoreInstance).where(ChoreInstance.account_id == account_id)
    if status is not None:
        stmt = stmt.where(ChoreInstance.status == status)
    result = await db.execute(
        stmt.order_by(ChoreInstance.created_at.desc(), ChoreInstance.id.desc())
    )
    return result.scalars().all()


async def get_chore_instances_by_template(
    db: AsyncSession, template_id: int
) -> list[ChoreInstance]:
    result = await db.execute(
        select(ChoreInstance)
        .where(ChoreInstance.template_id == template_id)
        .order_by(ChoreInstance.id)
    )
    return result.scalars().all()


async def get_auto_approvable_instances(db: AsyncSession):
    """Completed instances whose template auto-approves, with the delay."""
    result = await db.execute(
        select(ChoreInstance, ChoreTemplate.auto_approve_after)
        .join(ChoreTemplate, ChoreTemplate.id == ChoreInstance.template_id)
        .where(
            ChoreInstance.status == ChoreStatus.COMPLETED,
            ChoreTemplate.auto_approve_after.is_not(None),
        )
        .order_by(ChoreInstance.id)
    )
    return [(instance, delay) for instance, delay in result.all()]


async def get_overdue_instances(
    db: AsyncSession, now: datetime
) -> list[ChoreInstance]:
    """Non-terminal instances whose due date has passed."""
    result = await db.execute(
        select(ChoreInstance)
        .where(
            ChoreInstance.status.not_in(list(TERMINAL_STATUSES)),
            ChoreInstance.due_date.is_not(None),
            ChoreInstance.due_date < now,
        )
        .order_by(ChoreInstance.id)
    )
    return result.scalars().all()
