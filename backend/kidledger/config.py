"""Runtime configuration read from environment variables.

Values are resolved once at import time.  Deployments adjust behaviour by
exporting the variables before starting the server; tests pass explicit
arguments to the engine classes instead of touching the environment.
"""

import os

WEEKDAY_NAMES = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y"}


def parse_weekday(value: str | int) -> int:
    """Return a weekday number (0=Monday) from a name or number."""
    if isinstance(value, int):
        day = value
    elif value.strip().isdigit():
        day = int(value)
    else:
        name = value.strip().lower()
        matches = [i for i, n in enumerate(WEEKDAY_NAMES) if n.startswith(name[:3])]
        if not matches:
            raise ValueError(f"Unknown weekday: {value!r}")
        day = matches[0]
    if not 0 <= day <= 6:
        raise ValueError(f"Weekday out of range: {value!r}")
    return day


DATABASE_URL = os.getenv(
    "DATABASE_URL", "sqlite+aiosqlite:///./kidledger.db"
)  # swap with a Postgres URL (postgresql+asyncpg://...) if needed
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# First day of the allowance week when an account does not set its own.
ALLOWANCE_WEEK_START = parse_weekday(os.getenv("ALLOWANCE_WEEK_START", "monday"))
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "3"))
LEDGER_RETRY_BACKOFF = float(os.getenv("LEDGER_RETRY_BACKOFF", "0.05"))

SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "3600"))
AUTO_PAY_ALLOWANCE = _get_bool(os.getenv("AUTO_PAY_ALLOWANCE"), False)

NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL") or None
NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "5"))

SYSTEM_ACTOR_ID = "system"
