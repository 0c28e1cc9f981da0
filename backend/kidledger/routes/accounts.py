"""Endpoints for accounts, their ledger and their weekly allowance."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from kidledger.deps import get_actor_id, get_services
from kidledger.models import TransactionKind
from kidledger.schemas import (
    AccountCreate,
    AccountRead,
    AllowancePause,
    AllowanceUpdate,
    BalanceResponse,
    LedgerResponse,
    TransactionCreate,
    TransactionRead,
)
from kidledger.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("", response_model=AccountRead)
async def add_account(
    data: AccountCreate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    options = {}
    if data.timezone:
        options["timezone"] = data.timezone
    account = await services.ledger.create_account(
        data.name,
        weekly_allowance=data.weekly_allowance,
        allowance_day=data.allowance_day,
        **options,
    )
    logger.info("Account %s created by %s", account.id, actor_id)
    return account


@router.get("/{account_id}", response_model=AccountRead)
async def read_account(account_id: int, services: Services = Depends(get_services)):
    return await services.ledger.get_account(account_id)


@router.get("/{account_id}/balance", response_model=BalanceResponse)
async def read_balance(account_id: int, services: Services = Depends(get_services)):
    balance = await services.ledger.get_balance(account_id)
    return {"account_id": account_id, "balance": balance}


@router.get("/{account_id}/transactions", response_model=LedgerResponse)
async def get_ledger(
    account_id: int,
    kind: Optional[TransactionKind] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Return the balance and a newest-first page of transactions."""
    transactions = await services.ledger.list_transactions(
        account_id, kind=kind, since=since, until=until, limit=limit, offset=offset
    )
    balance = await services.ledger.get_balance(account_id)
    return {"balance": balance, "transactions": transactions}


@router.post("/{account_id}/transactions", response_model=TransactionRead)
async def add_transaction(
    account_id: int,
    data: TransactionCreate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    """Create a new credit or debit transaction."""
    return await services.ledger.apply_mutation(
        account_id,
        data.amount,
        data.kind,
        data.description,
        actor_id,
        source_ref=data.source_ref,
    )


@router.put("/{account_id}/allowance", response_model=AccountRead)
async def update_allowance(
    account_id: int,
    data: AllowanceUpdate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    changes = data.model_dump(exclude_unset=True)
    account = await services.ledger.get_account(account_id)
    if "weekly_allowance" in changes:
        account = await services.ledger.set_weekly_allowance(
            account_id, changes["weekly_allowance"]
        )
    if "allowance_day" in changes:
        account = await services.ledger.set_allowance_day(
            account_id, changes["allowance_day"]
        )
    logger.info("Allowance settings of account %s updated by %s", account_id, actor_id)
    return account


@router.post("/{account_id}/allowance/pay", response_model=TransactionRead)
async def pay_allowance(
    account_id: int,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    return await services.allowance.pay_weekly_allowance(account_id, actor_id)


@router.post("/{account_id}/allowance/pause", response_model=AccountRead)
async def pause_allowance(
    account_id: int,
    data: AllowancePause,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    account = await services.ledger.pause_allowance(account_id, data.reason)
    logger.info("Allowance of account %s paused by %s", account_id, actor_id)
    return account


@router.post("/{account_id}/allowance/resume", response_model=AccountRead)
async def resume_allowance(
    account_id: int,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    account = await services.ledger.resume_allowance(account_id)
    logger.info("Allowance of account %s resumed by %s", account_id, actor_id)
    return account


@router.get("/{account_id}/transactions/verify")
async def verify_ledger(account_id: int, services: Services = Depends(get_services)):
    """Replay the ledger from zero and report whether it is consistent."""
    replay = await services.ledger.verify_account(account_id)
    return {
        "account_id": replay.account_id,
        "consistent": replay.consistent,
        "stored_balance": str(replay.stored_balance),
        "replayed_balance": str(replay.replayed_balance),
        "transaction_count": replay.transaction_count,
        "mismatched_transaction_ids": replay.mismatched_transaction_ids,
    }


@router.get("", response_model=List[AccountRead])
async def list_accounts(services: Services = Depends(get_services)):
    return await services.ledger.list_accounts()
