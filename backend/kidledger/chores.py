"""Chore workflow: the state machine for a single chore instance.

::

    assigned -> in_progress -> completed -> approved
        \\__________________/        \\--> rejected
    any non-terminal state with a past due date -> expired

Allowed moves live in ``TRANSITIONS``; every transition runs inside the
owning account's unit of work, so approval's ledger credit and the
instance's review fields commit together and a reviewer racing the
auto-approval sweep cannot both win.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from kidledger import crud
from kidledger.config import SYSTEM_ACTOR_ID
from kidledger.exceptions import (
    AccountNotFound,
    ChoreNotFound,
    DuplicateSourceRef,
    InvalidAmount,
    InvalidTransition,
    LedgerError,
    ProofRequired,
)
from kidledger.ledger import AccountUnit, LedgerEngine
from kidledger.models import (
    ChoreInstance,
    ChoreStatus,
    Transaction,
    TransactionKind,
    to_money,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, tuple[frozenset, ChoreStatus]] = {
    "start": (frozenset({ChoreStatus.ASSIGNED}), ChoreStatus.IN_PROGRESS),
    "complete": (
        frozenset({ChoreStatus.ASSIGNED, ChoreStatus.IN_PROGRESS}),
        ChoreStatus.COMPLETED,
    ),
    "approve": (frozenset({ChoreStatus.COMPLETED}), ChoreStatus.APPROVED),
    "reject": (frozenset({ChoreStatus.COMPLETED}), ChoreStatus.REJECTED),
    "expire": (
        frozenset(
            {ChoreStatus.ASSIGNED, ChoreStatus.IN_PROGRESS, ChoreStatus.COMPLETED}
        ),
        ChoreStatus.EXPIRED,
    ),
}

AUTO_APPROVE_NOTES = "Auto-approved"


def next_status(current: ChoreStatus, action: str) -> Optional[ChoreStatus]:
    """Target state of ``action`` from ``current``, or ``None`` if not allowed."""
    sources, target = TRANSITIONS[action]
    if ChoreStatus(current) in sources:
        return target
    return None


def chore_source_ref(instance_id: int) -> str:
    return f"chore:{instance_id}"


class ChoreWorkflow:
    def __init__(self, ledger: LedgerEngine, session_factory: async_sessionmaker | None = None):
        self.ledger = ledger
        self.session_factory = session_factory or ledger.session_factory

    @property
    def clock(self):
        return self.ledger.clock

    # --- creation and queries ---------------------------------------------

    async def create_instance(
        self,
        account_id: int,
        title: str,
        reward_amount,
        actor_id: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
        require_photo: bool = False,
    ) -> ChoreInstance:
        """Assign a one-off chore directly, without a template."""
        reward_amount = to_money(reward_amount)
        if reward_amount <= 0:
            raise InvalidAmount(reward_amount)
        instance = ChoreInstance(
            account_id=account_id,
            title=title,
            description=description,
            reward_amount=reward_amount,
            require_photo=require_photo,
            due_date=due_date,
            status=ChoreStatus.ASSIGNED,
            created_at=self.clock.now(),
        )
        async with self.session_factory() as session:
            async with session.begin():
                if await crud.get_account(session, account_id) is None:
                    raise AccountNotFound(account_id)
                await crud.add_chore_instance(session, instance)
        logger.info(
            "Chore %s assigned to account %s by %s", instance.id, account_id, actor_id
        )
        self.ledger.notifier.chore_status_changed(instance.id, instance.status)
        return instance

    async def get_instance(self, instance_id: int) -> ChoreInstance:
        async with self.session_factory() as session:
            instance = await crud.get_chore_instance(session, instance_id)
        if instance is None:
            raise ChoreNotFound(instance_id)
        return instance

    async def list_chore_instances(
        self, account_id: int, status: Optional[ChoreStatus] = None
    ) -> list[ChoreInstance]:
        async with self.session_factory() as session:
            if await crud.get_account(session, account_id) is None:
                raise AccountNotFound(account_id)
            return await crud.get_chore_instances_by_account(session, account_id, status)

    # --- transitions ------------------------------------------------------

    async def _transition(
        self,
        instance_id: int,
        action: str,
        apply: Callable[[AccountUnit, ChoreInstance], Awaitable[object]] | None = None,
    ):
        """Move an instance along ``action`` inside its account's unit.

        ``apply`` performs the action's side effects before the status
        changes; its return value is returned.  Without ``apply`` the
        updated instance is returned.
        """
        current = await self.get_instance(instance_id)

        async def work(unit: AccountUnit):
            instance = await crud.get_chore_instance(unit.session, instance_id)
            target = next_status(instance.status, action)
            if target is None:
                raise InvalidTransition(instance_id, instance.status.value, action)
            result = instance
            if apply is not None:
                result = await apply(unit, instance)
            instance.status = target
            unit.session.add(instance)
            unit.chore_status_changed(instance.id, target)
            return result

        return await self.ledger.run_in_account(current.account_id, work)

    async def start(self, instance_id: int, actor_id: str) -> ChoreInstance:
        instance = await self._transition(instance_id, "start")
        logger.info("Chore %s started by %s", instance_id, actor_id)
        return instance

    async def complete(
        self, instance_id: int, actor_id: str, proof_ref: Optional[str] = None
    ) -> ChoreInstance:
        async def apply(unit: AccountUnit, instance: ChoreInstance):
            if instance.require_photo and not proof_ref:
                raise ProofRequired(instance.id)
            instance.completed_at = unit.now
            instance.proof_ref = proof_ref
            return instance

        instance = await self._transition(instance_id, "complete", apply)
        logger.info("Chore %s completed by %s", instance_id, actor_id)
        return instance

    async def approve(
        self, instance_id: int, actor_id: str, review_notes: Optional[str] = None
    ) -> Transaction:
        """Approve a completed chore and credit its reward."""

        async def apply(unit: AccountUnit, instance: ChoreInstance):
            try:
                tx = await self.ledger.apply_in_unit(
                    unit,
                    instance.reward_amount,
                    TransactionKind.CREDIT,
                    f"Chore completed: {instance.title}",
                    actor_id,
                    source_ref=chore_source_ref(instance.id),
                )
            except DuplicateSourceRef:
                raise InvalidTransition(
                    instance.id, instance.status.value, "approve"
                ) from None
            instance.resulting_transaction_id = tx.id
            instance.reviewed_at = unit.now
            instance.reviewer_id = actor_id
            instance.review_notes = review_notes
            return tx

        tx = await self._transition(instance_id, "approve", apply)
        logger.info(
            "Chore %s approved by %s, transaction %s", instance_id, actor_id, tx.id
        )
        return tx

    async def reject(
        self, instance_id: int, actor_id: str, review_notes: str
    ) -> ChoreInstance:
        """Reject a completed chore; the reviewer must say why."""
        if not review_notes or not review_notes.strip():
            raise ValueError("Rejecting a chore requires review notes")

        async def apply(unit: AccountUnit, instance: ChoreInstance):
            instance.reviewed_at = unit.now
            instance.reviewer_id = actor_id
            instance.review_notes = review_notes
            return instance

        instance = await self._transition(instance_id, "reject", apply)
        logger.info("Chore %s rejected by %s", instance_id, actor_id)
        return instance

    async def expire(
        self, instance_id: int, now: Optional[datetime] = None
    ) -> ChoreInstance:
        """Expire an overdue chore.  Already-terminal chores are left as-is."""
        instance = await self.get_instance(instance_id)
        if instance.status.is_terminal:
            return instance

        async def work(unit: AccountUnit) -> ChoreInstance:
            instance = await crud.get_chore_instance(unit.session, instance_id)
            if instance.status.is_terminal:
                return instance
            if instance.due_date is None or instance.due_date >= (now or unit.now):
                raise InvalidTransition(instance_id, instance.status.value, "expire")
            instance.status = next_status(instance.status, "expire")
            unit.session.add(instance)
            unit.chore_status_changed(instance.id, instance.status)
            logger.info("Chore %s expired", instance_id)
            return instance

        return await self.ledger.run_in_account(instance.account_id, work)

    # --- sweeps -----------------------------------------------------------

    async def auto_approve_due(self, now: Optional[datetime] = None) -> list[Transaction]:
        """Approve, as the system actor, completed chores left unreviewed too long."""
        now = now or self.clock.now()
        async with self.session_factory() as session:
            candidates = await crud.get_auto_approvable_instances(session)

        approved = []
        for instance, delay in candidates:
            if instance.completed_at is None or instance.completed_at + delay > now:
                continue
            try:
                approved.append(
                    await self.approve(
                        instance.id, SYSTEM_ACTOR_ID, review_notes=AUTO_APPROVE_NOTES
                    )
                )
            except InvalidTransition:
                logger.info("Chore %s was reviewed before auto-approval", instance.id)
            except LedgerError as exc:
                logger.warning("Auto-approval of chore %s failed: %s", instance.id, exc)
        return approved

    async def expire_overdue(self, now: Optional[datetime] = None) -> list[ChoreInstance]:
        """Expire every non-terminal chore whose due date has passed."""
        now = now or self.clock.now()
        async with self.session_factory() as session:
            overdue = await crud.get_overdue_instances(session, now)

        expired = []
        for instance in overdue:
            try:
                result = await self.expire(instance.id, now)
            except InvalidTransition:
                continue
            if result.status == ChoreStatus.EXPIRED:
                expired.append(result)
        return expired
