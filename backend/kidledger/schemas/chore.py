from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

from kidledger.models import ChoreStatus, RecurrenceType


class ChoreTemplateCreate(BaseModel):
    account_id: int
    title: str
    description: Optional[str] = None
    reward_amount: Decimal = Field(gt=0, decimal_places=2)
    recurrence_type: RecurrenceType = RecurrenceType.DAILY
    days_of_week: List[int] = []
    day_of_month: Optional[int] = None
    require_photo: bool = False
    auto_approve_after: Optional[timedelta] = None


class ChoreTemplateRead(BaseModel):
    id: int
    account_id: int
    title: str
    description: Optional[str] = None
    reward_amount: Decimal
    recurrence_type: RecurrenceType
    days_of_week: List[int]
    day_of_month: Optional[int] = None
    active: bool
    last_generated_date: Optional[date] = None
    require_photo: bool
    auto_approve_after: Optional[timedelta] = None
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ChoreTemplateUpdate(BaseModel):
    active: Optional[bool] = None
    reward_amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)


class ChoreCreate(BaseModel):
    account_id: int
    title: str
    description: Optional[str] = None
    reward_amount: Decimal = Field(gt=0, decimal_places=2)
    due_date: Optional[datetime] = None
    require_photo: bool = False


class ChoreRead(BaseModel):
    id: int
    template_id: Optional[int] = None
    account_id: int
    title: str
    description: Optional[str] = None
    reward_amount: Decimal
    require_photo: bool
    due_date: Optional[datetime] = None
    status: ChoreStatus
    completed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewer_id: Optional[str] = None
    review_notes: Optional[str] = None
    proof_ref: Optional[str] = None
    resulting_transaction_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChoreComplete(BaseModel):
    proof_ref: Optional[str] = None


class ChoreReview(BaseModel):
    review_notes: Optional[str] = None


class ChoreRejection(BaseModel):
    review_notes: str = Field(min_length=1)
