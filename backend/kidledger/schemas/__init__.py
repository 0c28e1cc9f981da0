"""Convenience imports for all schema classes used by the API."""

from .account import (
    AccountCreate,
    AccountRead,
    AllowanceUpdate,
    AllowancePause,
    BalanceResponse,
)
from .transaction import TransactionCreate, TransactionRead, LedgerResponse
from .chore import (
    ChoreTemplateCreate,
    ChoreTemplateRead,
    ChoreTemplateUpdate,
    ChoreCreate,
    ChoreRead,
    ChoreComplete,
    ChoreReview,
    ChoreRejection,
)
from .scheduler import SchedulerTick, SchedulerReportRead
