"""Wiring of the engine components around one session factory."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from kidledger.allowance import AllowanceScheduler
from kidledger.chores import ChoreWorkflow
from kidledger.clock import Clock, SystemClock
from kidledger.config import AUTO_PAY_ALLOWANCE, NOTIFY_TIMEOUT, NOTIFY_WEBHOOK_URL
from kidledger.ledger import LedgerEngine
from kidledger.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    Notifier,
    WebhookNotificationSink,
)
from kidledger.recurrence import RecurrenceGenerator

logger = logging.getLogger(__name__)


@dataclass
class SchedulerReport:
    generated: int = 0
    auto_approved: int = 0
    expired: int = 0
    allowances_paid: int = 0


@dataclass
class Services:
    ledger: LedgerEngine
    allowance: AllowanceScheduler
    chores: ChoreWorkflow
    recurrence: RecurrenceGenerator
    notifier: Notifier

    @property
    def clock(self) -> Clock:
        return self.ledger.clock

    async def run_scheduler_pass(
        self,
        now: Optional[datetime] = None,
        pay_allowances: bool = AUTO_PAY_ALLOWANCE,
    ) -> SchedulerReport:
        """One tick of the background driver.

        Order matters: new instances first, then auto-approval so a chore
        waiting on review is paid before the expiry sweep looks at it.
        """
        now = now or self.clock.now()
        report = SchedulerReport()
        report.generated = len(await self.recurrence.generate_due_instances(now))
        report.auto_approved = len(await self.chores.auto_approve_due(now))
        report.expired = len(await self.chores.expire_overdue(now))
        if pay_allowances:
            report.allowances_paid = len(
                await self.allowance.process_pending_allowances(now=now)
            )
        logger.info(
            "Scheduler pass: %s generated, %s auto-approved, %s expired, %s allowances",
            report.generated,
            report.auto_approved,
            report.expired,
            report.allowances_paid,
        )
        return report


def default_sink() -> NotificationSink:
    if NOTIFY_WEBHOOK_URL:
        return WebhookNotificationSink(NOTIFY_WEBHOOK_URL, timeout=NOTIFY_TIMEOUT)
    return LoggingNotificationSink()


def build_services(
    session_factory: async_sessionmaker,
    clock: Clock | None = None,
    sink: NotificationSink | None = None,
    **ledger_options,
) -> Services:
    clock = clock or SystemClock()
    notifier = Notifier(sink or default_sink())
    ledger = LedgerEngine(session_factory, clock=clock, notifier=notifier, **ledger_options)
    return Services(
        ledger=ledger,
        allowance=AllowanceScheduler(ledger),
        chores=ChoreWorkflow(ledger),
        recurrence=RecurrenceGenerator(session_factory, clock=clock, notifier=notifier),
        notifier=notifier,
    )
