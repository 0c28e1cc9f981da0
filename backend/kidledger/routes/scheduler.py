"""Manual trigger for the background scheduler pass.

The same pass runs periodically from ``main``; this endpoint lets cron or
an operator drive it on demand, optionally for an explicit moment.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from kidledger.clock import to_naive_utc
from kidledger.deps import get_actor_id, get_services
from kidledger.schemas import SchedulerReportRead, SchedulerTick
from kidledger.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.post("/tick", response_model=SchedulerReportRead)
async def tick(
    data: SchedulerTick | None = None,
    services: Services = Depends(get_services),
    actor_id: str = Depends(get_actor_id),
):
    data = data or SchedulerTick()
    options = {}
    if data.pay_allowances is not None:
        options["pay_allowances"] = data.pay_allowances
    now = to_naive_utc(data.now) if data.now else None
    logger.info("Scheduler pass triggered by %s", actor_id)
    report = await services.run_scheduler_pass(now, **options)
    return asdict(report)
