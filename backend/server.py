from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import time
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Import configuration
from config import get_settings, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception, set_tag

# Import database and routers
from database import init_db, dispose_engine
from card_reconciliation.endpoints import router as card_reconciliation_router

# Get settings
settings = get_settings()

# Configure structured logging
# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="card-reconciliation"
)
logger = get_logger(__name__)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=settings.API_VERSION,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )
    set_tag("service", "card-reconciliation")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logger.info("Starting Corporate Card Reconciliation API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    env_status = validate_environment()
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    if settings.DATABASE_URL:
        await init_db()
        logger.info("PostgreSQL connection established")

    yield

    logger.info("Shutting down Corporate Card Reconciliation API...")
    await dispose_engine()


# Create the main app
app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Reconciles corporate card transactions with expense claims.

    ### Card Reconciliation (/api/card-reconciliation)
    - Feed import with classification and fraud scoring
    - Fraud scans raising typed alerts
    - Ranked expense matching, auto-linking and review flagging
    - Period reconciliation reports and tenant sweeps
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Health check for load balancers.

    Returns 503 when the database is configured but unreachable.
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    if settings.DATABASE_URL:
        try:
            from database import get_engine
            from sqlalchemy import text

            async with get_engine().begin() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "connected"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = {"status": "disconnected", "error": str(e)}

    env_status = validate_environment()
    health_status["checks"]["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status.get("warnings", [])),
        "errors": len(env_status.get("errors", []))
    }

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


# Include card reconciliation routes
api_router.include_router(card_reconciliation_router)

app.include_router(api_router)


# ==================== MIDDLEWARE ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log requests with timing and attach the request id to log records"""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
    tenant_id = request.headers.get("X-Tenant-ID") or request.query_params.get("tenant_id")
    set_request_context(request_id=request_id, tenant_id=tenant_id)

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

        return response
    except Exception as e:
        logger.error(f"[{request_id}] Request failed: {str(e)}")
        raise
    finally:
        clear_request_context()


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}")
    capture_exception(exc, path=request.url.path)

    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exc() if settings.debug_enabled else None
        }
    )
