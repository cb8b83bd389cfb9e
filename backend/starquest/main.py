"""FastAPI application entry point.

This module wires together the API routers, maps ledger errors onto HTTP
responses and starts the optional settlement loop. Route handlers let
:class:`LedgerError` propagate; the handler below turns it into the
``{"code", "message"}`` body every client expects.
"""

import os
import asyncio
import logging
from datetime import date

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import create_db_and_tables, async_session
from .errors import LedgerError
from .routes import (
    auth,
    family,
    children,
    quests,
    rewards,
    stars,
    redemptions,
    approvals,
    balances,
    credit,
)
from .settlement import run_due_settlements

# Basic logging configuration. The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

RUN_SETTLEMENT_LOOP = os.getenv("RUN_SETTLEMENT_LOOP", "false").lower() == "true"

app = FastAPI(title="StarQuest Ledger")

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
    """Initialize the database and kick off background tasks."""

    await create_db_and_tables()
    if RUN_SETTLEMENT_LOOP:
        asyncio.create_task(daily_settlement_task())


async def daily_settlement_task():
    """Background coroutine that settles due families once per day."""

    logger.info("Starting daily settlement task")
    while True:
        try:
            async with async_session() as session:
                await run_due_settlements(session, date.today())
        except Exception as exc:
            logger.exception("Daily settlement task failed: %s", exc)
        # Sleep for roughly one day before running again.
        await asyncio.sleep(60 * 60 * 24)


app.include_router(auth.router)
app.include_router(family.router)
app.include_router(children.router)
app.include_router(quests.router)
app.include_router(rewards.router)
app.include_router(stars.router)
app.include_router(redemptions.router)
app.include_router(approvals.router)
app.include_router(balances.router)
app.include_router(credit.router)


@app.get("/")
async def read_root():
    return {"message": "Welcome to the StarQuest Ledger API"}


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    """Expected domain failures: answer with their code, no stack trace."""
    if exc.status_code >= 500:
        logger.error("Ledger failure during request %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message},
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
