"""Best-effort delivery of balance and chore status events.

The engine hands events to a ``Notifier`` after the database commit.  The
notifier schedules delivery on the running event loop and returns at once;
a failing sink is logged and otherwise ignored so it can never fail or roll
back the mutation that produced the event.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Protocol

import httpx

from kidledger.models import Transaction, ChoreStatus

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def balance_changed(
        self, account_id: int, new_balance: Decimal, transaction: Transaction
    ) -> None: ...

    async def chore_status_changed(
        self, instance_id: int, new_status: ChoreStatus
    ) -> None: ...


class LoggingNotificationSink:
    """Default sink used when no webhook is configured."""

    async def balance_changed(self, account_id, new_balance, transaction):
        logger.info(
            "Balance of account %s is now %s after transaction %s",
            account_id,
            new_balance,
            transaction.id,
        )

    async def chore_status_changed(self, instance_id, new_status):
        logger.info("Chore %s is now %s", instance_id, new_status.value)


class WebhookNotificationSink:
    """POST each event as JSON to an external notification service."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: dict) -> None:
        if self._client is not None:
            resp = await self._client.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()

    async def balance_changed(self, account_id, new_balance, transaction):
        await self._post(
            {
                "event": "balance_changed",
                "account_id": account_id,
                "balance": str(new_balance),
                "transaction": {
                    "id": transaction.id,
                    "kind": transaction.kind.value,
                    "amount": str(transaction.amount),
                    "description": transaction.description,
                    "balance_after": str(transaction.balance_after),
                    "actor_id": transaction.actor_id,
                    "created_at": transaction.created_at.isoformat(),
                    "source_ref": transaction.source_ref,
                },
            }
        )

    async def chore_status_changed(self, instance_id, new_status):
        await self._post(
            {
                "event": "chore_status_changed",
                "instance_id": instance_id,
                "status": new_status.value,
            }
        )


class Notifier:
    """Fire-and-forget front for a ``NotificationSink``."""

    def __init__(self, sink: NotificationSink | None = None):
        self.sink = sink or LoggingNotificationSink()
        self._pending: set[asyncio.Task] = set()

    def balance_changed(
        self, account_id: int, new_balance: Decimal, transaction: Transaction
    ) -> None:
        self._dispatch(
            "balance_changed",
            self.sink.balance_changed(account_id, new_balance, transaction),
        )

    def chore_status_changed(self, instance_id: int, new_status: ChoreStatus) -> None:
        self._dispatch(
            "chore_status_changed",
            self.sink.chore_status_changed(instance_id, new_status),
        )

    def _dispatch(self, event: str, coro) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(event, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, coro) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Notification %s could not be delivered", event)

    async def drain(self) -> None:
        """Wait for every scheduled delivery; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
