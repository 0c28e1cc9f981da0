"""Tests for recurring chore templates and instance generation."""

import asyncio
import pathlib
import sys
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidledger import crud
from kidledger.clock import ManualClock
from kidledger.database import create_db_and_tables
from kidledger.exceptions import AccountNotFound, TemplateNotFound
from kidledger.models import ChoreStatus, RecurrenceType
from kidledger.recurrence import (
    Daily,
    Monthly,
    OneTime,
    Weekly,
    build_recurrence,
    is_eligible,
    recurrence_columns,
)
from kidledger.services import build_services


async def _setup(clock):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await create_db_and_tables(engine)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)
    services = build_services(TestSession, clock=clock)
    return services, TestSession


async def _instances(TestSession, template_id):
    async with TestSession() as session:
        return await crud.get_chore_instances_by_template(session, template_id)


def test_eligibility_rules():
    monday = date(2024, 1, 1)
    assert is_eligible(Daily(), None, monday)
    assert not is_eligible(Daily(), monday, monday)
    assert is_eligible(Daily(), date(2023, 12, 31), monday)

    school_days = Weekly(frozenset({0, 2, 4}))
    assert is_eligible(school_days, None, monday)
    assert not is_eligible(school_days, None, date(2024, 1, 2))

    assert is_eligible(OneTime(), None, monday)
    assert not is_eligible(OneTime(), date(2023, 6, 1), monday)

    end_of_month = Monthly(31)
    assert is_eligible(end_of_month, None, date(2024, 1, 31))
    assert not is_eligible(end_of_month, None, date(2024, 2, 29))
    assert not is_eligible(end_of_month, None, date(2024, 4, 30))
    assert is_eligible(Monthly(15), date(2024, 1, 15), date(2024, 2, 15))


def test_recurrence_validation():
    with pytest.raises(ValueError):
        Weekly(frozenset())
    with pytest.raises(ValueError):
        Weekly(frozenset({7}))
    with pytest.raises(ValueError):
        Monthly(32)
    with pytest.raises(ValueError):
        build_recurrence(RecurrenceType.MONTHLY)

    weekly = build_recurrence("weekly", [4, 0])
    assert weekly == Weekly(frozenset({0, 4}))
    assert recurrence_columns(weekly)["days_of_week"] == [0, 4]


def test_weekly_template_generates_on_listed_days():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 0, 30))  # Monday
        services, TestSession = await _setup(clock)
        account = await services.ledger.create_account("Kid")
        template = await services.recurrence.create_template(
            account.id, "Practice piano", "1", Weekly(frozenset({0, 2, 4})), "parent-1"
        )

        for _ in range(14):
            await services.recurrence.generate_due_instances()
            clock.advance(days=1)

        instances = await _instances(TestSession, template.id)
        assert [i.created_at.date() for i in instances] == [
            date(2024, 1, 1),
            date(2024, 1, 3),
            date(2024, 1, 5),
            date(2024, 1, 8),
            date(2024, 1, 10),
            date(2024, 1, 12),
        ]
        assert all(i.status == ChoreStatus.ASSIGNED for i in instances)

    asyncio.run(run())


def test_generation_is_idempotent_for_the_same_day():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, TestSession = await _setup(clock)
        account = await services.ledger.create_account("Kid")
        template = await services.recurrence.create_template(
            account.id, "Walk dog", "2", Daily(), "parent-1"
        )

        first = await services.recurrence.generate_due_instances()
        clock.advance(hours=3)
        second = await services.recurrence.generate_due_instances()
        assert len(first) == 1
        assert second == []
        assert len(await _instances(TestSession, template.id)) == 1

        stored = await services.recurrence.get_template(template.id)
        assert stored.last_generated_date == date(2024, 1, 1)

    asyncio.run(run())


def test_monthly_day_31_skips_shorter_months():
    async def run():
        clock = ManualClock(datetime(2024, 2, 1, 10, 0))
        services, TestSession = await _setup(clock)
        account = await services.ledger.create_account("Kid")
        template = await services.recurrence.create_template(
            account.id, "Clean garage", "5", Monthly(31), "parent-1"
        )

        for _ in range(60):  # Feb 1 through Mar 31
            await services.recurrence.generate_due_instances()
            clock.advance(days=1)

        [instance] = await _instances(TestSession, template.id)
        assert instance.created_at.date() == date(2024, 3, 31)

    asyncio.run(run())


def test_one_time_template_generates_once_without_deadline():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, TestSession = await _setup(clock)
        account = await services.ledger.create_account("Kid")
        template = await services.recurrence.create_template(
            account.id, "Wash car", "10", OneTime(), "parent-1"
        )

        [instance] = await services.recurrence.generate_due_instances()
        assert instance.due_date is None
        clock.advance(days=1)
        assert await services.recurrence.generate_due_instances() == []
        assert len(await _instances(TestSession, template.id)) == 1

    asyncio.run(run())


def test_due_date_is_end_of_local_day():
    async def run():
        clock = ManualClock(datetime(2024, 1, 2, 3, 0))  # Jan 1 evening in New York
        services, _ = await _setup(clock)
        account = await services.ledger.create_account(
            "Kid", timezone="America/New_York"
        )
        template = await services.recurrence.create_template(
            account.id, "Read", "1", Daily(), "parent-1"
        )
        [instance] = await services.recurrence.generate_due_instances()
        assert instance.due_date == datetime(2024, 1, 2, 5, 0)
        stored = await services.recurrence.get_template(template.id)
        assert stored.last_generated_date == date(2024, 1, 1)

    asyncio.run(run())


def test_inactive_templates_and_reward_changes():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, TestSession = await _setup(clock)
        account = await services.ledger.create_account("Kid")
        template = await services.recurrence.create_template(
            account.id, "Vacuum", "2", Daily(), "parent-1"
        )
        [first] = await services.recurrence.generate_due_instances()

        await services.recurrence.update_reward(template.id, "3")
        await services.recurrence.set_active(template.id, False)
        clock.advance(days=1)
        assert await services.recurrence.generate_due_instances() == []

        await services.recurrence.set_active(template.id, True)
        [second] = await services.recurrence.generate_due_instances()
        assert second.reward_amount == Decimal("3.00")

        instances = await _instances(TestSession, template.id)
        assert [i.reward_amount for i in instances] == [Decimal("2.00"), Decimal("3.00")]
        assert instances[0].id == first.id

        active = await services.recurrence.list_templates(account.id, include_inactive=False)
        assert [t.id for t in active] == [template.id]

    asyncio.run(run())


def test_template_lookups_fail_for_unknown_ids():
    async def run():
        services, _ = await _setup(ManualClock())
        with pytest.raises(AccountNotFound):
            await services.recurrence.create_template(
                999, "Nothing", "1", Daily(), "parent-1"
            )
        with pytest.raises(TemplateNotFound):
            await services.recurrence.get_template(999)
        with pytest.raises(TemplateNotFound):
            await services.recurrence.set_active(999, False)

    asyncio.run(run())
