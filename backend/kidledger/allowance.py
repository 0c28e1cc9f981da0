"""Weekly allowance payments.

An account is paid at most once per allowance week.  The week starts at
local midnight on the account's ``allowance_day`` (or the configured
default), and the anchor ``last_allowance_at`` is written in the same
commit as the ledger credit.  The credit's ``source_ref`` names the week,
so even a replayed request that slipped past the anchor check would hit
the ledger's unique index instead of paying twice.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from kidledger.clock import local_date
from kidledger.config import ALLOWANCE_WEEK_START, SYSTEM_ACTOR_ID
from kidledger.exceptions import (
    AllowancePaused,
    AlreadyPaidThisWeek,
    DuplicateSourceRef,
    LedgerError,
    ZeroAllowanceAmount,
)
from kidledger.ledger import AccountUnit, LedgerEngine
from kidledger.models import Account, Transaction, TransactionKind, to_money

logger = logging.getLogger(__name__)

ALLOWANCE_DESCRIPTION = "Weekly Allowance"


def week_start(day: date, first_weekday: int) -> date:
    """First day of the allowance week containing ``day``."""
    return day - timedelta(days=(day.weekday() - first_weekday) % 7)


class AllowanceScheduler:
    def __init__(self, ledger: LedgerEngine, default_week_start: int = ALLOWANCE_WEEK_START):
        self.ledger = ledger
        self.default_week_start = default_week_start

    def week_start_for(self, account: Account, moment: datetime) -> date:
        first = account.allowance_day
        if first is None:
            first = self.default_week_start
        return week_start(local_date(moment, account.timezone), first)

    def is_paid_for_week(self, account: Account, now: datetime) -> bool:
        if account.last_allowance_at is None:
            return False
        paid_week = self.week_start_for(account, account.last_allowance_at)
        return paid_week >= self.week_start_for(account, now)

    def allowance_source_ref(self, account: Account, now: datetime) -> str:
        return f"allowance:{account.id}:{self.week_start_for(account, now).isoformat()}"

    async def pay_weekly_allowance(self, account_id: int, actor_id: str) -> Transaction:
        """Credit this week's allowance and move the anchor to now."""

        async def work(unit: AccountUnit) -> Transaction:
            account = unit.account
            if account.allowance_paused:
                raise AllowancePaused(account.id, account.allowance_paused_reason)
            amount = to_money(account.weekly_allowance)
            if amount <= 0:
                raise ZeroAllowanceAmount(account.id)
            current_week = self.week_start_for(account, unit.now)
            if self.is_paid_for_week(account, unit.now):
                raise AlreadyPaidThisWeek(account.id, current_week)
            try:
                tx = await self.ledger.apply_in_unit(
                    unit,
                    amount,
                    TransactionKind.CREDIT,
                    f"{ALLOWANCE_DESCRIPTION} (week of {current_week.isoformat()})",
                    actor_id,
                    source_ref=self.allowance_source_ref(account, unit.now),
                )
            except DuplicateSourceRef:
                raise AlreadyPaidThisWeek(account.id, current_week) from None
            account.last_allowance_at = unit.now
            unit.session.add(account)
            return tx

        tx = await self.ledger.run_in_account(account_id, work)
        logger.info(
            "Weekly allowance of %s paid to account %s by %s",
            tx.amount,
            account_id,
            actor_id,
        )
        return tx

    async def process_pending_allowances(
        self, actor_id: str = SYSTEM_ACTOR_ID, now: Optional[datetime] = None
    ) -> list[Transaction]:
        """Pay every account that is due this week.

        Accounts with no allowance, a paused allowance or this week's
        payment already made are skipped; a failure on one account is
        logged and does not stop the others.
        """
        now = now or self.ledger.clock.now()
        paid = []
        for account in await self.ledger.list_accounts():
            if account.allowance_paused or to_money(account.weekly_allowance) <= 0:
                continue
            if self.is_paid_for_week(account, now):
                continue
            try:
                paid.append(await self.pay_weekly_allowance(account.id, actor_id))
            except AlreadyPaidThisWeek:
                continue
            except LedgerError as exc:
                logger.warning("Allowance for account %s not paid: %s", account.id, exc)
        if paid:
            logger.info("Paid %s pending allowances", len(paid))
        return paid
