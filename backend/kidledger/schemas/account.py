"""Account request and response models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AccountCreate(BaseModel):
    name: str
    weekly_allowance: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    allowance_day: Optional[int] = Field(default=None, ge=0, le=6)
    timezone: Optional[str] = None


class AccountRead(BaseModel):
    id: int
    name: str
    balance: Decimal
    weekly_allowance: Decimal
    last_allowance_at: Optional[datetime] = None
    allowance_day: Optional[int] = None
    allowance_paused: bool
    allowance_paused_reason: Optional[str] = None
    timezone: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AllowanceUpdate(BaseModel):
    weekly_allowance: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    allowance_day: Optional[int] = Field(default=None, ge=0, le=6)


class AllowancePause(BaseModel):
    reason: Optional[str] = None


class BalanceResponse(BaseModel):
    account_id: int
    balance: Decimal
