import logging
from typing import List

from fastapi import APIRouter, Depends

from kidledger.deps import get_actor_id, get_services
from kidledger.recurrence import build_recurrence
from kidledger.schemas import ChoreTemplateCreate, ChoreTemplateRead, ChoreTemplateUpdate
from kidledger.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("", response_model=ChoreTemplateRead)
async def add_template(
    data: ChoreTemplateCreate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    recurrence = build_recurrence(
        data.recurrence_type, data.days_of_week, data.day_of_month
    )
    return await services.recurrence.create_template(
        data.account_id,
        data.title,
        data.reward_amount,
        recurrence,
        actor_id,
        description=data.description,
        require_photo=data.require_photo,
        auto_approve_after=data.auto_approve_after,
    )


@router.get("/account/{account_id}", response_model=List[ChoreTemplateRead])
async def list_templates(
    account_id: int,
    include_inactive: bool = True,
    services: Services = Depends(get_services),
):
    await services.ledger.get_account(account_id)
    return await services.recurrence.list_templates(
        account_id, include_inactive=include_inactive
    )


@router.get("/{template_id}", response_model=ChoreTemplateRead)
async def read_template(template_id: int, services: Services = Depends(get_services)):
    return await services.recurrence.get_template(template_id)


@router.put("/{template_id}", response_model=ChoreTemplateRead)
async def update_template(
    template_id: int,
    data: ChoreTemplateUpdate,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    """Toggle a template or change its reward for future instances."""
    template = await services.recurrence.get_template(template_id)
    if data.reward_amount is not None:
        template = await services.recurrence.update_reward(
            template_id, data.reward_amount
        )
    if data.active is not None:
        template = await services.recurrence.set_active(template_id, data.active)
    logger.info("Chore template %s updated by %s", template_id, actor_id)
    return template
