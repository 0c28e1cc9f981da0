"""FastAPI application entry point.

This module wires together the API routers, maps engine errors onto HTTP
responses and starts the periodic scheduler pass that generates chores,
auto-approves and expires them, and optionally pays allowances.
"""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kidledger.config import LOG_LEVEL, SCHEDULER_INTERVAL_SECONDS
from kidledger.database import create_db_and_tables
from kidledger.deps import get_services
from kidledger.exceptions import LedgerError
from kidledger.routes import accounts, chores, scheduler, templates

# The log level can be controlled with an environment variable so
# deployments can adjust verbosity without code changes.
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(title="Kid Ledger")

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    """Initialize the database and kick off the scheduler loop."""

    await create_db_and_tables()
    asyncio.create_task(scheduler_task())


async def scheduler_task():
    """Background coroutine that runs one scheduler pass per interval."""

    logger.info("Starting scheduler task, interval %ss", SCHEDULER_INTERVAL_SECONDS)
    while True:
        try:
            await get_services().run_scheduler_pass()
        except Exception as exc:
            logger.exception("Scheduler pass failed: %s", exc)
        await asyncio.sleep(SCHEDULER_INTERVAL_SECONDS)


app.include_router(accounts.router)
app.include_router(templates.router)
app.include_router(chores.router)
app.include_router(scheduler.router)


@app.get("/")
async def read_root():
    return {"message": "Welcome to Kid Ledger API"}


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    logger.info("Request %s refused: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"code": exc.code, "message": exc.message},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"code": "invalid_value", "message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
