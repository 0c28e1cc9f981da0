"""Transaction-related request and response models."""

from typing import Optional
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from kidledger.models import TransactionKind


class TransactionCreate(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    kind: TransactionKind
    description: str
    source_ref: Optional[str] = None


class TransactionRead(BaseModel):
    id: int
    account_id: int
    amount: Decimal
    kind: TransactionKind
    description: str
    balance_after: Decimal
    actor_id: str
    created_at: datetime
    source_ref: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerResponse(BaseModel):
    balance: Decimal
    transactions: list[TransactionRead]
