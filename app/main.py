import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.api.router import api_router
from app.config import settings
from app.core.database import init_db
from app.services.fulfillment.exceptions import (
    AlreadyProcessed,
    DeliveryFailure,
    Expired,
    InvalidJobState,
    InvalidToken,
    NotFound,
    OrderNotPaid,
    PipelineError,
    RateLimitExceeded,
    RegenerationCapExceeded,
    UpstreamGenerationError,
)


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    # Quieten uvicorn access logs (we'll log requests ourselves)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)

# Most specific first: lookup walks this list in order
PIPELINE_ERROR_STATUS: list[tuple[type[PipelineError], int]] = [
    (InvalidToken, 404),
    (NotFound, 404),
    (Expired, 410),
    (AlreadyProcessed, 409),
    (InvalidJobState, 409),
    (RegenerationCapExceeded, 409),
    (OrderNotPaid, 409),
    (RateLimitExceeded, 429),
    (UpstreamGenerationError, 502),
    (DeliveryFailure, 502),
]


def status_for(exc: PipelineError) -> int:
    for error_type, status_code in PIPELINE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    from app.services.scheduler import scheduler

    # Startup
    setup_logging()
    logger.info("Song fulfillment API starting up")
    if settings.debug:
        await init_db()
    scheduler.start()
    yield
    # Shutdown
    scheduler.stop()
    logger.info("Song fulfillment API shutting down")


app = FastAPI(
    title="Song Fulfillment API",
    description="Lyrics approval, audio generation, release and notification pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

# Proxy headers middleware - trust X-Forwarded-For/Proto from reverse proxy (Fly.io)
# Rate limits key on the real client IP
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map pipeline errors to HTTP. Only the customer-safe message leaves the API."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")

    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.public_message, "error": type(exc).__name__},
        headers=headers,
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests, skipping OPTIONS preflight."""
    # Skip OPTIONS (CORS preflight) and health checks
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    # Only log non-2xx or pipeline-driving endpoints
    path = request.url.path
    if response.status_code >= 400 or any(
        keyword in path for keyword in ["approve", "reject", "webhooks", "internal"]
    ):
        logger.info(f"{request.method} {path} → {response.status_code}")

    return response


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
