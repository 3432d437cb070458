"""
BALLOTPROOF — REST API.

FastAPI server exposing ballot creation, whitelist management and proof
lookup. Main entry point for initialization and routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from ballotproof import __version__, config
from ballotproof.exceptions import (
    BallotProofError,
    DatabaseTransactionError,
    NotWhitelisted,
    ProofError,
    RootSyncFailed,
    RootSyncPending,
    StateError,
    UnknownBallot,
    ValidationError,
)
from ballotproof.ledger import LocalLedgerClient
from ballotproof.metrics import MetricsMiddleware, metrics
from ballotproof.models import ErrorResponse
from ballotproof.registry import BallotRegistry
from ballotproof.routes import merkle as merkle_router
from ballotproof.service import VotingService

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the whitelist store, replay trees and start the root-push worker."""
    db_path = config.DB_PATH  # Read at runtime, not import time
    logger.info("Starting lifespan with DB_PATH: %s", db_path)

    registry = getattr(app.state, "registry", None) or BallotRegistry()
    service = await VotingService.open(db_path, LocalLedgerClient(registry))

    app.state.registry = registry
    app.state.service = service
    try:
        yield
    finally:
        await service.close()
        app.state.service = None


app = FastAPI(
    title="BALLOTPROOF — Merkle Proof Voting API",
    description="Whitelist management and Merkle proof lookup for ballots.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)

app.include_router(merkle_router.router)


# ─── Error mapping ───────────────────────────────────────────────────


def _error(status_code: int, exc: Exception, retryable: bool = False, headers=None) -> JSONResponse:
    body = ErrorResponse(message=str(exc), retryable=retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(BallotProofError)
async def ballotproof_error_handler(request: Request, exc: BallotProofError) -> JSONResponse:
    if isinstance(exc, RootSyncPending):
        return _error(503, exc, retryable=True, headers={"Retry-After": str(config.RETRY_AFTER)})
    if isinstance(exc, RootSyncFailed):
        return _error(502, exc)
    if isinstance(exc, UnknownBallot):
        return _error(404, exc)
    if isinstance(exc, (ValidationError, NotWhitelisted, ProofError)):
        return _error(400, exc)
    if isinstance(exc, StateError):
        return _error(409, exc)
    if isinstance(exc, DatabaseTransactionError):
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return _error(500, exc)
    logger.exception("Unhandled BALLOTPROOF error on %s", request.url.path)
    return _error(500, exc)


# ─── Core Endpoints ──────────────────────────────────────────────────


@app.get("/", tags=["health"])
async def root() -> dict:
    return {"service": "ballotproof", "version": __version__, "status": "operational"}


@app.get("/metrics", tags=["health"], response_class=PlainTextResponse)
async def get_metrics() -> str:
    return metrics.to_prometheus()
