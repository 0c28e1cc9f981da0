import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from kidledger.clock import to_naive_utc
from kidledger.deps import get_actor_id, get_services
from kidledger.models import ChoreStatus
from kidledger.schemas import (
    ChoreComplete,
    ChoreCreate,
    ChoreRead,
    ChoreRejection,
    ChoreReview,
    TransactionRead,
)
from kidledger.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chores", tags=["chores"])


@router.post("", response_model=ChoreRead)
async def add_chore(
    data: ChoreCreate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    due_date = to_naive_utc(data.due_date) if data.due_date else None
    return await services.chores.create_instance(
        data.account_id,
        data.title,
        data.reward_amount,
        actor_id,
        description=data.description,
        due_date=due_date,
        require_photo=data.require_photo,
    )


@router.get("/account/{account_id}", response_model=List[ChoreRead])
async def list_chores(
    account_id: int,
    status: Optional[ChoreStatus] = None,
    services: Services = Depends(get_services),
):
    return await services.chores.list_chore_instances(account_id, status)


@router.get("/{chore_id}", response_model=ChoreRead)
async def read_chore(chore_id: int, services: Services = Depends(get_services)):
    return await services.chores.get_instance(chore_id)


@router.post("/{chore_id}/start", response_model=ChoreRead)
async def start_chore(
    chore_id: int,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    return await services.chores.start(chore_id, actor_id)


@router.post("/{chore_id}/complete", response_model=ChoreRead)
async def complete_chore(
    chore_id: int,
    data: ChoreComplete | None = None,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    proof_ref = data.proof_ref if data else None
    return await services.chores.complete(chore_id, actor_id, proof_ref=proof_ref)


@router.post("/{chore_id}/approve", response_model=TransactionRead)
async def approve_chore(
    chore_id: int,
    data: ChoreReview | None = None,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    """Approve a completed chore and return the reward transaction."""
    notes = data.review_notes if data else None
    return await services.chores.approve(chore_id, actor_id, review_notes=notes)


@router.post("/{chore_id}/reject", response_model=ChoreRead)
async def reject_chore(
    chore_id: int,
    data: ChoreRejection,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    return await services.chores.reject(chore_id, actor_id, data.review_notes)


@router.post("/{chore_id}/expire", response_model=ChoreRead)
async def expire_chore(
    chore_id: int,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    chore = await services.chores.expire(chore_id)
    logger.info("Expiry of chore %s requested by %s", chore_id, actor_id)
    return chore
