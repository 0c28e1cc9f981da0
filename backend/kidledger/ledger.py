"""Ledger engine: the only code path that writes an account balance.

Every balance change goes through ``LedgerEngine.apply_mutation`` (or
``apply_in_unit`` for workflows that need extra writes in the same commit)
and produces exactly one immutable ``Transaction`` carrying the balance
after it applied.

Mutations on one account are serialized twice over:

* in-process, by an ``asyncio.Lock`` per account id, so concurrent
  request handlers queue instead of racing;
* in the database, by loading the account ``FOR UPDATE`` and claiming its
  ``version`` column with a guarded update, so another process that got
  there first makes us roll back and retry.

Different accounts never share a lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kidledger import crud
from kidledger.clock import Clock, SystemClock
from kidledger.config import (
    DEFAULT_TIMEZONE,
    LEDGER_MAX_RETRIES,
    LEDGER_RETRY_BACKOFF,
)
from kidledger.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateSourceRef,
    InsufficientFunds,
    InvalidAmount,
    ReservedSourceRef,
)
from kidledger.models import (
    Account,
    ChoreStatus,
    Transaction,
    TransactionKind,
    to_money,
)
from kidledger.notifications import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Prefixes of source refs written only by the allowance and chore workflows
RESERVED_SOURCE_PREFIXES = ("allowance:", "chore:")


class AccountLocks:
    """``asyncio.Lock`` per account id, kept only while someone holds or awaits it."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, account_id: int):
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        self._users[account_id] = self._users.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[account_id] -= 1
            if not self._users[account_id]:
                del self._users[account_id]
                del self._locks[account_id]


class _StaleAccount(Exception):
    """The account row changed between our read and our claim."""


@dataclass
class AccountUnit:
    """State of one locked, atomic unit of work on an account."""

    session: AsyncSession
    account: Account
    now: datetime
    balance_events: list[Transaction] = field(default_factory=list)
    status_events: list[tuple[int, ChoreStatus]] = field(default_factory=list)

    def chore_status_changed(self, instance_id: int, status: ChoreStatus) -> None:
        self.status_events.append((instance_id, status))


@dataclass
class LedgerReplay:
    """Result of replaying an account's ledger from zero."""

    account_id: int
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    mismatched_transaction_ids: list[int]

    @property
    def consistent(self) -> bool:
        return (
            not self.mismatched_transaction_ids
            and self.stored_balance == self.replayed_balance
        )


class LedgerEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        max_retries: int = LEDGER_MAX_RETRIES,
        retry_backoff: float = LEDGER_RETRY_BACKOFF,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.notifier = notifier or Notifier()
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.locks = AccountLocks()

    # --- unit of work -----------------------------------------------------

    async def run_in_account(
        self, account_id: int, work: Callable[[AccountUnit], Awaitable[T]]
    ) -> T:
        """Run ``work`` as one serialized, atomic unit on an account.

        ``work`` receives an ``AccountUnit`` whose session is inside an open
        database transaction with the account row claimed.  Everything it
        stages commits together; any exception rolls all of it back.
        Events collected on the unit are dispatched after the commit.
        """
        attempt = 0
        async with self.locks.hold(account_id):
            while True:
                attempt += 1
                try:
                    async with self.session_factory() as session:
                        async with session.begin():
                            account = await crud.get_account(
                                session, account_id, for_update=True
                            )
                            if account is None:
                                raise AccountNotFound(account_id)
                            if not await crud.claim_account_version(session, account):
                                raise _StaleAccount()
                            unit = AccountUnit(
                                session=session, account=account, now=self.clock.now()
                            )
                            result = await work(unit)
                    break
                except _StaleAccount:
                    if attempt >= self.max_retries:
                        logger.error(
                            "Account %s still contended after %s attempts",
                            account_id,
                            attempt,
                        )
                        raise ConcurrencyConflict(account_id, attempt)
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Account %s changed concurrently, retrying in %.3fs",
                        account_id,
                        delay,
                    )
                    await asyncio.sleep(delay)
        self._emit(unit)
        return result

    def _emit(self, unit: AccountUnit) -> None:
        for tx in unit.balance_events:
            self.notifier.balance_changed(tx.account_id, tx.balance_after, tx)
        for instance_id, status in unit.status_events:
            self.notifier.chore_status_changed(instance_id, status)

    # --- mutations --------------------------------------------------------

    async def apply_in_unit(
        self,
        unit: AccountUnit,
        amount,
        kind: TransactionKind,
        description: str,
        actor_id: str,
        source_ref: Optional[str] = None,
    ) -> Transaction:
        """Append one transaction and move the balance inside an open unit."""

        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmount(amount)
        kind = TransactionKind(kind)
        account = unit.account
        balance = to_money(account.balance)

        if kind == TransactionKind.DEBIT:
            if amount > balance:
                raise InsufficientFunds(account.id, balance, amount)
            new_balance = balance - amount
        else:
            new_balance = balance + amount

        session = unit.session
        if source_ref is not None:
            existing = await crud.get_transaction_by_source(session, account.id, source_ref)
            if existing is not None:
                raise DuplicateSourceRef(account.id, source_ref)

        # Keep created_at monotonic per account even if the clock steps back
        created_at = unit.now
        latest = await crud.get_latest_transaction(session, account.id)
        if latest is not None and latest.created_at > created_at:
            created_at = latest.created_at

        tx = Transaction(
            account_id=account.id,
            amount=amount,
            kind=kind,
            description=description,
            balance_after=new_balance,
            actor_id=actor_id,
            created_at=created_at,
            source_ref=source_ref,
        )
        try:
            await crud.add_transaction(session, tx)
        except IntegrityError:
            raise DuplicateSourceRef(account.id, source_ref) from None
        account.balance = new_balance
        session.add(account)
        unit.balance_events.append(tx)
        logger.info(
            "%s %s on account %s by %s, balance now %s",
            kind.value.capitalize(),
            amount,
            account.id,
            actor_id,
            new_balance,
        )
        return tx

    async def apply_mutation(
        self,
        account_id: int,
        amount,
        kind: TransactionKind,
        description: str,
        actor_id: str,
        source_ref: Optional[str] = None,
    ) -> Transaction:
        """Credit or debit an account and return the resulting transaction."""
        if source_ref is not None and source_ref.startswith(RESERVED_SOURCE_PREFIXES):
            raise ReservedSourceRef(source_ref)

        async def work(unit: AccountUnit) -> Transaction:
            return await self.apply_in_unit(
                unit, amount, kind, description, actor_id, source_ref
            )

        return await self.run_in_account(account_id, work)

    # --- account administration -------------------------------------------

    async def create_account(
        self,
        name: str,
        weekly_allowance=Decimal("0.00"),
        allowance_day: Optional[int] = None,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> Account:
        """Open an account with a zero balance."""
        weekly_allowance = to_money(weekly_allowance)
        if weekly_allowance < 0:
            raise InvalidAmount(weekly_allowance)
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {timezone!r}") from None
        account = Account(
            name=name,
            weekly_allowance=weekly_allowance,
            allowance_day=allowance_day,
            timezone=timezone,
            created_at=self.clock.now(),
        )
        async with self.session_factory() as session:
            async with session.begin():
                await crud.add_account(session, account)
        logger.info("Account %s created for %s", account.id, name)
        return account

    async def _update_account(self, account_id: int, **values) -> Account:
        async def work(unit: AccountUnit) -> Account:
            for key, value in values.items():
                setattr(unit.account, key, value)
            unit.session.add(unit.account)
            return unit.account

        return await self.run_in_account(account_id, work)

    async def set_weekly_allowance(self, account_id: int, amount) -> Account:
        amount = to_money(amount)
        if amount < 0:
            raise InvalidAmount(amount)
        account = await self._update_account(account_id, weekly_allowance=amount)
        logger.info("Weekly allowance for account %s set to %s", account_id, amount)
        return account

    async def set_allowance_day(self, account_id: int, day: Optional[int]) -> Account:
        if day is not None and not 0 <= day <= 6:
            raise ValueError(f"Allowance day must be 0-6, got {day}")
        return await self._update_account(account_id, allowance_day=day)

    async def pause_allowance(
        self, account_id: int, reason: Optional[str] = None
    ) -> Account:
        account = await self._update_account(
            account_id, allowance_paused=True, allowance_paused_reason=reason
        )
        logger.info("Allowance paused for account %s: %s", account_id, reason)
        return account

    async def resume_allowance(self, account_id: int) -> Account:
        account = await self._update_account(
            account_id, allowance_paused=False, allowance_paused_reason=None
        )
        logger.info("Allowance resumed for account %s", account_id)
        return account

    # --- queries ----------------------------------------------------------

    async def get_account(self, account_id: int) -> Account:
        async with self.session_factory() as session:
            account = await crud.get_account(session, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def list_accounts(self) -> list[Account]:
        async with self.session_factory() as session:
            return await crud.get_all_accounts(session)

    async def get_balance(self, account_id: int) -> Decimal:
        account = await self.get_account(account_id)
        return to_money(account.balance)

    async def list_transactions(
        self,
        account_id: int,
        kind: Optional[TransactionKind] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Newest-first page of an account's transactions."""
        async with self.session_factory() as session:
            if await crud.get_account(session, account_id) is None:
                raise AccountNotFound(account_id)
            return await crud.get_transactions_by_account(
                session,
                account_id,
                kind=kind,
                since=since,
                until=until,
                limit=limit,
                offset=offset,
            )

    async def verify_account(self, account_id: int) -> LedgerReplay:
        """Replay the ledger from zero and compare with stored snapshots."""
        async with self.session_factory() as session:
            account = await crud.get_account(session, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            txs = await crud.get_transactions_by_account(
                session, account_id, newest_first=False
            )
        running = Decimal("0.00")
        mismatched = []
        for tx in txs:
            running = running + tx.signed_amount
            if running != tx.balance_after or running < 0:
                mismatched.append(tx.id)
        replay = LedgerReplay(
            account_id=account_id,
            stored_balance=to_money(account.balance),
            replayed_balance=to_money(running),
            transaction_count=len(txs),
            mismatched_transaction_ids=mismatched,
        )
        if not replay.consistent:
            logger.error(
                "Ledger for account %s does not replay: stored %s, replayed %s",
                account_id,
                replay.stored_balance,
                replay.replayed_balance,
            )
        return replay
