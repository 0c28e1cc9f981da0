"""Recurring chore templates.

The eligibility rule is a pure function of a template's recurrence, the
day it last generated and the account-local ``today``; an external timer
(the background driver in ``main``, cron, a message trigger) decides when
to ask.  ``RecurrenceGenerator.generate_due_instances`` applies the rule to
every active template and is safe to call any number of times for the
same moment: each template/day pair is claimed by a guarded update of
``last_generated_date`` before its instance is inserted.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from kidledger import crud
from kidledger.clock import Clock, SystemClock, local_date, local_midnight_utc
from kidledger.exceptions import AccountNotFound, InvalidAmount, TemplateNotFound
from kidledger.models import (
    ChoreInstance,
    ChoreStatus,
    ChoreTemplate,
    RecurrenceType,
    to_money,
)
from kidledger.notifications import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OneTime:
    pass


@dataclass(frozen=True)
class Daily:
    pass


@dataclass(frozen=True)
class Weekly:
    days_of_week: frozenset  # 0=Monday .. 6=Sunday

    def __post_init__(self):
        days = frozenset(int(d) for d in self.days_of_week)
        if not days:
            raise ValueError("Weekly recurrence needs at least one weekday")
        if any(not 0 <= d <= 6 for d in days):
            raise ValueError(f"Weekdays must be 0-6, got {sorted(days)}")
        object.__setattr__(self, "days_of_week", days)


@dataclass(frozen=True)
class Monthly:
    day_of_month: int

    def __post_init__(self):
        if not 1 <= self.day_of_month <= 31:
            raise ValueError(f"Day of month must be 1-31, got {self.day_of_month}")


Recurrence = Union[OneTime, Daily, Weekly, Monthly]


def build_recurrence(
    recurrence_type: RecurrenceType | str,
    days_of_week: Optional[Iterable[int]] = None,
    day_of_month: Optional[int] = None,
) -> Recurrence:
    """Build the tagged recurrence from its stored columns."""
    recurrence_type = RecurrenceType(recurrence_type)
    if recurrence_type == RecurrenceType.ONE_TIME:
        return OneTime()
    if recurrence_type == RecurrenceType.DAILY:
        return Daily()
    if recurrence_type == RecurrenceType.WEEKLY:
        return Weekly(frozenset(days_of_week or ()))
    if day_of_month is None:
        raise ValueError("Monthly recurrence needs a day of month")
    return Monthly(day_of_month)


def recurrence_for(template: ChoreTemplate) -> Recurrence:
    return build_recurrence(
        template.recurrence_type, template.days_of_week, template.day_of_month
    )


def recurrence_columns(recurrence: Recurrence) -> dict:
    """Inverse of ``build_recurrence``: the column values to store."""
    if isinstance(recurrence, OneTime):
        return {"recurrence_type": RecurrenceType.ONE_TIME, "days_of_week": [], "day_of_month": None}
    if isinstance(recurrence, Daily):
        return {"recurrence_type": RecurrenceType.DAILY, "days_of_week": [], "day_of_month": None}
    if isinstance(recurrence, Weekly):
        return {
            "recurrence_type": RecurrenceType.WEEKLY,
            "days_of_week": sorted(recurrence.days_of_week),
            "day_of_month": None,
        }
    if isinstance(recurrence, Monthly):
        return {
            "recurrence_type": RecurrenceType.MONTHLY,
            "days_of_week": [],
            "day_of_month": recurrence.day_of_month,
        }
    raise TypeError(f"Unknown recurrence {recurrence!r}")


def is_eligible(
    recurrence: Recurrence, last_generated_date: Optional[date], today: date
) -> bool:
    """Whether a template should produce an instance on ``today``."""
    if isinstance(recurrence, OneTime):
        return last_generated_date is None
    if last_generated_date is not None and last_generated_date >= today:
        return False
    if isinstance(recurrence, Daily):
        return True
    if isinstance(recurrence, Weekly):
        return today.weekday() in recurrence.days_of_week
    if isinstance(recurrence, Monthly):
        return today.day == recurrence.day_of_month
    raise TypeError(f"Unknown recurrence {recurrence!r}")


def due_date_for(recurrence: Recurrence, today: date, tz_name: str) -> Optional[datetime]:
    """End of the local generation day; one-time chores have no deadline."""
    if isinstance(recurrence, OneTime):
        return None
    return local_midnight_utc(today + timedelta(days=1), tz_name)


class RecurrenceGenerator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.notifier = notifier or Notifier()

    # --- template administration ------------------------------------------

    async def create_template(
        self,
        account_id: int,
        title: str,
        reward_amount,
        recurrence: Recurrence,
        actor_id: str,
        description: Optional[str] = None,
        require_photo: bool = False,
        auto_approve_after: Optional[timedelta] = None,
    ) -> ChoreTemplate:
        reward_amount = to_money(reward_amount)
        if reward_amount <= 0:
            raise InvalidAmount(reward_amount)
        if auto_approve_after is not None and auto_approve_after < timedelta(0):
            raise ValueError("auto_approve_after cannot be negative")
        template = ChoreTemplate(
            account_id=account_id,
            title=title,
            description=description,
            reward_amount=reward_amount,
            require_photo=require_photo,
            auto_approve_after=auto_approve_after,
            created_by=actor_id,
            created_at=self.clock.now(),
            **recurrence_columns(recurrence),
        )
        async with self.session_factory() as session:
            async with session.begin():
                if await crud.get_account(session, account_id) is None:
                    raise AccountNotFound(account_id)
                await crud.add_template(session, template)
        logger.info(
            "Chore template %s (%s) created for account %s by %s",
            template.id,
            template.recurrence_type.value,
            account_id,
            actor_id,
        )
        return template

    async def _update_template(self, template_id: int, **values) -> ChoreTemplate:
        async with self.session_factory() as session:
            async with session.begin():
                template = await crud.get_template(session, template_id)
                if template is None:
                    raise TemplateNotFound(template_id)
                for key, value in values.items():
                    setattr(template, key, value)
                session.add(template)
        return template

    async def set_active(self, template_id: int, active: bool) -> ChoreTemplate:
        template = await self._update_template(template_id, active=active)
        logger.info(
            "Chore template %s %s", template_id, "activated" if active else "deactivated"
        )
        return template

    async def update_reward(self, template_id: int, reward_amount) -> ChoreTemplate:
        reward_amount = to_money(reward_amount)
        if reward_amount <= 0:
            raise InvalidAmount(reward_amount)
        return await self._update_template(template_id, reward_amount=reward_amount)

    async def get_template(self, template_id: int) -> ChoreTemplate:
        async with self.session_factory() as session:
            template = await crud.get_template(session, template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template

    async def list_templates(
        self, account_id: int, include_inactive: bool = True
    ) -> list[ChoreTemplate]:
        async with self.session_factory() as session:
            return await crud.get_templates_by_account(
                session, account_id, include_inactive=include_inactive
            )

    # --- generation -------------------------------------------------------

    async def generate_due_instances(
        self, now: Optional[datetime] = None
    ) -> list[ChoreInstance]:
        """Create today's instance for every eligible active template."""
        now = now or self.clock.now()
        async with self.session_factory() as session:
            templates = await crud.get_active_templates_with_timezone(session)

        created = []
        for template, tz_name in templates:
            today = local_date(now, tz_name)
            recurrence = recurrence_for(template)
            if not is_eligible(recurrence, template.last_generated_date, today):
                continue
            instance = await self._generate(template, recurrence, today, tz_name, now)
            if instance is not None:
                created.append(instance)
        if created:
            logger.info("Generated %s chore instances", len(created))
        return created

    async def _generate(
        self,
        template: ChoreTemplate,
        recurrence: Recurrence,
        today: date,
        tz_name: str,
        now: datetime,
    ) -> ChoreInstance | None:
        async with self.session_factory() as session:
            async with session.begin():
                claimed = await crud.claim_template_day(
                    session, template.id, today, once=isinstance(recurrence, OneTime)
                )
                if not claimed:
                    logger.debug(
                        "Template %s already generated for %s", template.id, today
                    )
                    return None
                instance = ChoreInstance(
                    template_id=template.id,
                    account_id=template.account_id,
                    title=template.title,
                    description=template.description,
                    reward_amount=template.reward_amount,
                    require_photo=template.require_photo,
                    due_date=due_date_for(recurrence, today, tz_name),
                    status=ChoreStatus.ASSIGNED,
                    created_at=now,
                )
                await crud.add_chore_instance(session, instance)
        template.last_generated_date = today
        self.notifier.chore_status_changed(instance.id, instance.status)
        return instance
