import logging
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import ValidationError

from src.core.config import settings
from src.core.exceptions import (
    EnqueueFailure,
    ProfileNotFoundError,
    ScanConflictError,
    ScanSchedulerError,
)
from src.routers import credentials, cron, scans

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="signal-scan", version="0.1.0")

# ---------------------------------------------------------------------------
# Middleware: request-id injection
# ---------------------------------------------------------------------------


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _error(request: Request, status_code: int, error: str, message: str, detail=None):
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(request, 422, "validation_error", "Request validation failed", exc.errors())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, exc.status_code, "http_error", str(exc.detail))


@app.exception_handler(ScanSchedulerError)
async def scan_error_handler(request: Request, exc: ScanSchedulerError):
    if isinstance(exc, ProfileNotFoundError):
        return _error(request, 404, "not_found", str(exc))
    if isinstance(exc, ScanConflictError):
        return _error(request, 409, "scan_conflict", str(exc))
    if isinstance(exc, EnqueueFailure):
        logger.error("Enqueue failure", extra={"request_id": _request_id(request)})
        return _error(request, 503, "enqueue_failed", str(exc))
    logger.exception("Scheduler error", extra={"request_id": _request_id(request)})
    return _error(request, 500, "scheduler_error", str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", extra={"request_id": _request_id(request)})
    return _error(
        request,
        500,
        "internal_error",
        "An unexpected error occurred",
        str(exc) if settings.DEBUG else None,
    )


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: str | None = Security(api_key_header),
):
    """Require X-API-Key header when API_KEY is configured."""
    if not settings.API_KEY:
        return  # auth disabled
    if api_key != settings.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Public endpoints (no auth)
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "signal-scan", "version": "0.1.0"}


# ---------------------------------------------------------------------------
# Routers (auth-protected)
# ---------------------------------------------------------------------------

app.include_router(scans.router, dependencies=[Depends(verify_api_key)])
app.include_router(credentials.router, dependencies=[Depends(verify_api_key)])
app.include_router(cron.router, dependencies=[Depends(verify_api_key)])
