"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text

from config.settings import settings
from src.cm_admin.api.router import router as admin_router
from src.cm_common.database import engine
from src.cm_common.errors import AppError
from src.cm_common.redis_client import close_redis, get_redis
from src.cm_common.response import error_response
from src.cm_gateway.middleware.request_log import RequestLogMiddleware
from src.cm_listing.api.router import router as listing_router
from src.cm_settlement.api.router import router as settlement_router
from src.cm_settlement.infrastructure.ledger_gateway import HttpLedgerGateway

# Command models rejected at the HTTP boundary
_VALIDATION_ERROR_CODE = 1001


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, connect the ledger gateway. Shutdown: dispose."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()
    # Raises LedgerUnavailableError and aborts startup if the ledger is down
    app.state.ledger = await HttpLedgerGateway.connect()
    yield
    await app.state.ledger.close()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, exc.retryable)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(ValidationError)
async def command_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid {field}: {first.get('msg', 'validation error')}"
    resp = error_response(_VALIDATION_ERROR_CODE, message)
    return JSONResponse(status_code=422, content=resp.model_dump())


app.include_router(listing_router, prefix="/api/v1")
app.include_router(settlement_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
