from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import time
import uuid
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import traceback

# .env must be loaded before settings are read
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings, get_cors_config, validate_environment
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception
from database import init_db
from reconciliation.session_registry import session_registry
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

settings = get_settings()

# JSON logs in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="bank-reconciliation"
)
logger = get_logger(__name__)

if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )

session_registry.configure(
    settings.RECON_DATE_WINDOW_DAYS,
    balance_tolerance=settings.RECON_BALANCE_TOLERANCE,
    variance_alert_percent=settings.RECON_VARIANCE_ALERT_PERCENT,
    session_ttl_minutes=settings.RECON_SESSION_TTL_MINUTES,
    max_sessions=settings.RECON_MAX_SESSIONS,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and check the database before serving."""
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION} ({settings.ENVIRONMENT})")

    env_status = validate_environment()
    for warning in env_status["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in env_status["errors"]:
        logger.error(f"Configuration error: {error}")
    if not env_status["valid"]:
        raise RuntimeError("Refusing to start with invalid production configuration")

    # Inline sessions work without a database
    if settings.DATABASE_URL:
        await init_db()

    yield

    open_sessions = len(session_registry.list_sessions())
    logger.info(f"Shutting down with {open_sessions} open session(s)")


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Bank reconciliation API.

    ### Reconciliation (/api/reconciliation)
    - Open sessions from inline transactions or the database
    - Find match candidates for bank transactions
    - Match / unmatch bank and ledger transactions
    - Notes, search, summary and balance check
    - Finalize and save sessions
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/health", tags=["Health"])
async def health_check():
    """Liveness check; does not touch the database."""
    return {
        "status": "healthy",
        "service": "bank-reconciliation",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "database_configured": bool(settings.DATABASE_URL),
        "open_sessions": len(session_registry.list_sessions()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


api_router.include_router(reconciliation_router)
app.include_router(api_router)


# ==================== MIDDLEWARE ====================

app.add_middleware(CORSMiddleware, **get_cors_config())


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag logs with a request id; log failed requests (every request in debug)."""
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"
    set_request_context(request_id, request.headers.get("X-User-Id"))

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"{request.method} {request.url.path} raised")
        raise
    finally:
        clear_request_context()

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)

    if response.status_code >= 400 or settings.debug_enabled:
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms}ms",
            extra={"request_id": request_id}
        )
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler: report to Sentry, hide details in production."""
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
    capture_exception(exc, path=request.url.path, method=request.method)

    content = {"detail": "Internal server error"}
    if not settings.is_production:
        content.update({
            "detail": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exc() if settings.debug_enabled else None,
        })
    return JSONResponse(status_code=500, content=content)
