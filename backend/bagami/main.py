from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bagami.config import settings
from bagami.logging_setup import configure_logging
from bagami.routes.system import router as system_router
from bagami.routes.wallet import router as wallet_router
from bagami.routes.payments import router as payments_router
from bagami.routes.backoffice import router as backoffice_router
from bagami.services.errors import (
    LedgerError, InvalidAmount, InvalidMetadata, InvalidSetting, InsufficientBalance,
    AccountSuspended, NotFound, AlreadyProcessed, PersistenceFailure,
)
import structlog

configure_logging()
log = structlog.get_logger()

# most specific first; LedgerError itself falls through to 400
ERROR_STATUS: list[tuple[type[LedgerError], int]] = [
    (InvalidAmount, 400),
    (InvalidMetadata, 400),
    (InvalidSetting, 400),
    (InsufficientBalance, 402),
    (AccountSuspended, 403),
    (NotFound, 404),
    (AlreadyProcessed, 409),
    (PersistenceFailure, 500),
]

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} Wallet API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} wallet ledger, withdrawals and platform-fee settlement"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(system_router)
app.include_router(wallet_router)
app.include_router(payments_router)
app.include_router(backoffice_router)

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status, content={"detail": exc.message, "code": exc.code})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
