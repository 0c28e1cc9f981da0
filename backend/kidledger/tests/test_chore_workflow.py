"""Tests for the chore instance state machine and its ledger effects."""

import asyncio
import pathlib
import sys
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidledger import crud
from kidledger.chores import TRANSITIONS, next_status
from kidledger.clock import ManualClock
from kidledger.database import create_db_and_tables
from kidledger.exceptions import ChoreNotFound, InvalidTransition, ProofRequired
from kidledger.models import ChoreStatus, TransactionKind
from kidledger.recurrence import Daily
from kidledger.services import build_services


class RecordingSink:
    def __init__(self):
        self.balances = []
        self.statuses = []

    async def balance_changed(self, account_id, new_balance, transaction):
        self.balances.append((account_id, new_balance))

    async def chore_status_changed(self, instance_id, new_status):
        self.statuses.append((instance_id, new_status))


async def _setup(clock=None):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await create_db_and_tables(engine)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)
    sink = RecordingSink()
    services = build_services(TestSession, clock=clock or ManualClock(), sink=sink)
    account = await services.ledger.create_account("Kid")
    return services, account, sink


def test_transition_table():
    assert next_status(ChoreStatus.ASSIGNED, "start") == ChoreStatus.IN_PROGRESS
    assert next_status(ChoreStatus.ASSIGNED, "complete") == ChoreStatus.COMPLETED
    assert next_status(ChoreStatus.IN_PROGRESS, "approve") is None
    assert next_status(ChoreStatus.COMPLETED, "reject") == ChoreStatus.REJECTED
    for action in TRANSITIONS:
        for status in (ChoreStatus.APPROVED, ChoreStatus.REJECTED, ChoreStatus.EXPIRED):
            assert next_status(status, action) is None


def test_approval_credits_reward_exactly_once():
    async def run():
        services, account, sink = await _setup()
        chores = services.chores
        chore = await chores.create_instance(account.id, "Dishes", "2.50", "parent-1")
        assert chore.status == ChoreStatus.ASSIGNED

        await chores.start(chore.id, "kid")
        done = await chores.complete(chore.id, "kid")
        assert done.status == ChoreStatus.COMPLETED
        assert done.completed_at is not None

        tx = await chores.approve(chore.id, "parent-1", review_notes="Nice job")
        assert tx.kind == TransactionKind.CREDIT
        assert tx.amount == Decimal("2.50")
        assert tx.description == "Chore completed: Dishes"
        assert tx.source_ref == f"chore:{chore.id}"

        approved = await chores.get_instance(chore.id)
        assert approved.status == ChoreStatus.APPROVED
        assert approved.resulting_transaction_id == tx.id
        assert approved.reviewer_id == "parent-1"
        assert approved.review_notes == "Nice job"
        assert approved.reviewed_at is not None

        with pytest.raises(InvalidTransition):
            await chores.approve(chore.id, "parent-1")
        assert len(await services.ledger.list_transactions(account.id)) == 1
        assert await services.ledger.get_balance(account.id) == Decimal("2.50")

        await services.notifier.drain()
        assert [status for _, status in sink.statuses] == [
            ChoreStatus.ASSIGNED,
            ChoreStatus.IN_PROGRESS,
            ChoreStatus.COMPLETED,
            ChoreStatus.APPROVED,
        ]
        assert sink.balances == [(account.id, Decimal("2.50"))]

    asyncio.run(run())


def test_rejection_creates_no_transaction():
    async def run():
        services, account, _ = await _setup()
        chores = services.chores
        chore = await chores.create_instance(account.id, "Laundry", "3", "parent-1")
        await chores.complete(chore.id, "kid")
        for notes in ("", "   "):
            with pytest.raises(ValueError):
                await chores.reject(chore.id, "parent-1", notes)
        assert (await chores.get_instance(chore.id)).status == ChoreStatus.COMPLETED

        rejected = await chores.reject(chore.id, "parent-1", review_notes="Still wet")
        assert rejected.status == ChoreStatus.REJECTED
        assert rejected.review_notes == "Still wet"
        assert rejected.resulting_transaction_id is None
        assert await services.ledger.list_transactions(account.id) == []

        with pytest.raises(InvalidTransition):
            await chores.approve(chore.id, "parent-1")

    asyncio.run(run())


def test_photo_proof_is_required_when_configured():
    async def run():
        services, account, _ = await _setup()
        chores = services.chores
        chore = await chores.create_instance(
            account.id, "Clean room", "4", "parent-1", require_photo=True
        )
        with pytest.raises(ProofRequired):
            await chores.complete(chore.id, "kid")
        assert (await chores.get_instance(chore.id)).status == ChoreStatus.ASSIGNED

        done = await chores.complete(chore.id, "kid", proof_ref="photos/room.jpg")
        assert done.status == ChoreStatus.COMPLETED
        assert done.proof_ref == "photos/room.jpg"

    asyncio.run(run())


def test_template_photo_requirement_carries_to_generated_chores():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        await services.recurrence.create_template(
            account.id, "Tidy desk", "2", Daily(), "parent-1", require_photo=True
        )
        [chore] = await services.recurrence.generate_due_instances()
        assert chore.require_photo is True

        with pytest.raises(ProofRequired):
            await services.chores.complete(chore.id, "kid")
        assert (await services.chores.get_instance(chore.id)).status == ChoreStatus.ASSIGNED

        done = await services.chores.complete(chore.id, "kid", proof_ref="photos/desk.jpg")
        assert done.status == ChoreStatus.COMPLETED

    asyncio.run(run())


def test_failed_credit_leaves_chore_awaiting_review(monkeypatch):
    async def run():
        services, account, sink = await _setup()
        chores = services.chores
        chore = await chores.create_instance(account.id, "Sweep", "2", "parent-1")
        await chores.complete(chore.id, "kid")

        async def failing_add_transaction(session, tx):
            raise RuntimeError("disk full")

        monkeypatch.setattr(crud, "add_transaction", failing_add_transaction)
        with pytest.raises(RuntimeError):
            await chores.approve(chore.id, "parent-1", review_notes="Good")
        monkeypatch.undo()

        stored = await chores.get_instance(chore.id)
        assert stored.status == ChoreStatus.COMPLETED
        assert stored.resulting_transaction_id is None
        assert stored.reviewer_id is None
        assert stored.reviewed_at is None
        assert await services.ledger.list_transactions(account.id) == []
        assert await services.ledger.get_balance(account.id) == Decimal("0")

        tx = await chores.approve(chore.id, "parent-1")
        assert (await chores.get_instance(chore.id)).resulting_transaction_id == tx.id
        await services.notifier.drain()
        assert sink.balances == [(account.id, Decimal("2.00"))]

    asyncio.run(run())


def test_invalid_transitions_are_refused():
    async def run():
        services, account, _ = await _setup()
        chores = services.chores
        chore = await chores.create_instance(account.id, "Trash", "1", "parent-1")
        with pytest.raises(InvalidTransition):
            await chores.approve(chore.id, "parent-1")
        with pytest.raises(InvalidTransition):
            await chores.reject(chore.id, "parent-1", "Not done yet")

        await chores.complete(chore.id, "kid")
        with pytest.raises(InvalidTransition) as excinfo:
            await chores.start(chore.id, "kid")
        assert excinfo.value.action == "start"

        with pytest.raises(ChoreNotFound):
            await chores.start(999, "kid")

    asyncio.run(run())


def test_expire_requires_past_due_date_and_is_idempotent():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        chores = services.chores
        chore = await chores.create_instance(
            account.id, "Homework", "1", "parent-1", due_date=clock.now() + timedelta(hours=1)
        )
        with pytest.raises(InvalidTransition):
            await chores.expire(chore.id)

        clock.advance(hours=2)
        expired = await chores.expire(chore.id)
        assert expired.status == ChoreStatus.EXPIRED
        again = await chores.expire(chore.id)
        assert again.status == ChoreStatus.EXPIRED

        with pytest.raises(InvalidTransition):
            await chores.complete(chore.id, "kid")

        undated = await chores.create_instance(account.id, "Someday", "1", "parent-1")
        with pytest.raises(InvalidTransition):
            await chores.expire(undated.id)

    asyncio.run(run())


def test_expire_overdue_sweep_skips_terminal_chores():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        chores = services.chores
        due = clock.now() + timedelta(hours=1)
        waiting = await chores.create_instance(account.id, "A", "1", "parent-1", due_date=due)
        started = await chores.create_instance(account.id, "B", "1", "parent-1", due_date=due)
        await chores.start(started.id, "kid")
        paid = await chores.create_instance(account.id, "C", "1", "parent-1", due_date=due)
        await chores.complete(paid.id, "kid")
        await chores.approve(paid.id, "parent-1")
        later = await chores.create_instance(
            account.id, "D", "1", "parent-1", due_date=due + timedelta(days=1)
        )

        clock.advance(hours=2)
        expired = await chores.expire_overdue()
        assert sorted(c.id for c in expired) == [waiting.id, started.id]
        assert (await chores.get_instance(paid.id)).status == ChoreStatus.APPROVED
        assert (await chores.get_instance(later.id)).status == ChoreStatus.ASSIGNED
        assert await chores.expire_overdue() == []

        by_status = await chores.list_chore_instances(account.id, ChoreStatus.EXPIRED)
        assert {c.id for c in by_status} == {waiting.id, started.id}

    asyncio.run(run())


def test_auto_approval_after_delay():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        template = await services.recurrence.create_template(
            account.id,
            "Feed the cat",
            "1.25",
            Daily(),
            "parent-1",
            auto_approve_after=timedelta(hours=24),
        )
        [chore] = await services.recurrence.generate_due_instances()
        assert chore.template_id == template.id
        await services.chores.complete(chore.id, "kid")

        clock.advance(hours=1)
        assert await services.chores.auto_approve_due() == []

        clock.advance(hours=24)
        [tx] = await services.chores.auto_approve_due()
        assert tx.actor_id == "system"
        assert tx.amount == Decimal("1.25")
        approved = await services.chores.get_instance(chore.id)
        assert approved.status == ChoreStatus.APPROVED
        assert approved.review_notes == "Auto-approved"

        assert await services.chores.auto_approve_due() == []
        assert len(await services.ledger.list_transactions(account.id)) == 1

    asyncio.run(run())


def test_manual_review_wins_over_later_auto_approval():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        await services.recurrence.create_template(
            account.id,
            "Water plants",
            "1",
            Daily(),
            "parent-1",
            auto_approve_after=timedelta(hours=1),
        )
        [chore] = await services.recurrence.generate_due_instances()
        await services.chores.complete(chore.id, "kid")
        await services.chores.reject(chore.id, "parent-1", "Leaves are dry")

        clock.advance(hours=3)
        assert await services.chores.auto_approve_due() == []
        assert await services.ledger.list_transactions(account.id) == []

    asyncio.run(run())


def test_scheduler_pass_approves_before_expiring():
    async def run():
        clock = ManualClock(datetime(2024, 1, 1, 12, 0))
        services, account, _ = await _setup(clock)
        await services.recurrence.create_template(
            account.id,
            "Make bed",
            "0.50",
            Daily(),
            "parent-1",
            auto_approve_after=timedelta(hours=24),
        )
        report = await services.run_scheduler_pass(pay_allowances=False)
        assert report.generated == 1
        [chore] = await services.chores.list_chore_instances(account.id)
        await services.chores.complete(chore.id, "kid")

        clock.advance(hours=25)
        report = await services.run_scheduler_pass(pay_allowances=False)
        assert report.generated == 1
        assert report.auto_approved == 1
        assert report.expired == 0
        assert (await services.chores.get_instance(chore.id)).status == ChoreStatus.APPROVED
        assert await services.ledger.get_balance(account.id) == Decimal("0.50")

    asyncio.run(run())
