"""Aggregate import for all API route modules."""

from . import (
    accounts,
    templates,
    chores,
    scheduler,
)

__all__ = [
    "accounts",
    "templates",
    "chores",
    "scheduler",
]
