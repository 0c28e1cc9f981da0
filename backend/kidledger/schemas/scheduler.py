from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SchedulerTick(BaseModel):
    now: Optional[datetime] = None
    pay_allowances: Optional[bool] = None


class SchedulerReportRead(BaseModel):
    generated: int
    auto_approved: int
    expired: int
    allowances_paid: int
