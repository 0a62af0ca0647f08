"""
Vacuum Rental API - Entry point.

Timed rental of self-service vacuum units: customers scan a machine QR,
pay upfront and the controller runs the unit; controllers heartbeat so
stale machines are taken offline, and maintenance intervals are enforced.

Configuration:
- FastAPI app with OpenAPI docs
- CORS for the customer and admin frontends
- Exception handler mapping RentalException.error_code → HTTP status
- Startup: logging, config validation, Redis, services, background jobs

Endpoints:
- GET  /api/health                 - Health check
- /api/machines/...                - Machine lookup and availability
- /api/sessions/...                - Rent, stop, cancel sessions
- POST /api/webhooks/payments      - Payment confirmation
- /api/devices/...                 - Controller heartbeat and reports
- /api/admin/...                   - Admin operations
- GET  /api/sse/stream             - Realtime updates
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
import logging

from vacuum_backend.config import config
from vacuum_backend.core.dependency import ServiceContainer, init_container, get_container
from vacuum_backend.exceptions import RentalException
from vacuum_backend.models.error import ErrorResponse
from vacuum_backend.repositories.redis_repository import RedisRepository
from vacuum_backend.routers import health, machines, sessions, webhooks, devices, admin, sse_router
from vacuum_backend.utils.logger import setup_logger


# ============================================================================
# FASTAPI INITIALIZATION
# ============================================================================

app = FastAPI(
    title="Vacuum Rental API",
    description="""
    Machine lifecycle and usage-session orchestration for self-service vacuum units.

    ## Flow

    1. **Scan**: the customer scans the machine QR → availability check
    2. **Pay**: balance (immediate) or PIX (confirmed by webhook)
    3. **Run**: the controller receives an activate command for the paid minutes
    4. **Stop**: user stop, timeout, admin or device report; usage is added to
       the maintenance counter, never refunded
    """,
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)


# ============================================================================
# MIDDLEWARE - CORS
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"]
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

STATUS_MAP = {
    # 400 BAD REQUEST
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,

    # 402 PAYMENT REQUIRED
    "PAYMENT_DECLINED": status.HTTP_402_PAYMENT_REQUIRED,

    # 404 NOT FOUND
    "MACHINE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "SESSION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "USER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,

    # 409 CONFLICT
    "MACHINE_BUSY": status.HTTP_409_CONFLICT,
    "HEARTBEAT_REQUIRED": status.HTTP_409_CONFLICT,
    "MAINTENANCE_BLOCKED": status.HTTP_409_CONFLICT,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,

    # 502 BAD GATEWAY
    "PAYMENT_GATEWAY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "NOTIFICATION_DELIVERY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "DEVICE_COMMAND_ERROR": status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(RentalException)
async def rental_exception_handler(request: Request, exc: RentalException):
    """
    Map RentalException.error_code → HTTP status and return an ErrorResponse.

    Logging by severity:
        - 500+: ERROR with stack trace
        - 409: WARNING (contention and state conflicts)
        - other 4xx: INFO
    """
    http_status = STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    error_response = ErrorResponse(
        success=False,
        error=exc.error_code,
        message=exc.message,
        data=exc.data if exc.data else None
    )

    if http_status >= 500:
        logging.error(f"Server error: {exc.message}", exc_info=True)
    elif http_status == status.HTTP_409_CONFLICT:
        logging.warning(f"Conflict: {exc.message}")
    else:
        logging.info(f"Client error: {exc.message}")

    return JSONResponse(
        status_code=http_status,
        content=error_response.model_dump(mode="json")
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Fallback for unhandled exceptions: generic 500, details only locally.
    """
    logging.error(f"Unhandled exception: {str(exc)}", exc_info=True)

    error_response = ErrorResponse(
        success=False,
        error="INTERNAL_SERVER_ERROR",
        message="Internal server error. Contact the administrator.",
        data={"detail": str(exc)} if config.ENVIRONMENT == "local" else None
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump()
    )


# ============================================================================
# STARTUP/SHUTDOWN EVENTS
# ============================================================================


@app.on_event("startup")
async def startup_event():
    """
    - Configure logging and validate configuration
    - Connect Redis (required only for LOCK_BACKEND=redis)
    - Build services and start the dispatcher and periodic jobs
    """
    setup_logger()
    config.validate()

    redis_repo = RedisRepository()
    try:
        await redis_repo.connect()
    except RedisError as e:
        if config.LOCK_BACKEND == "redis":
            logging.error(f"❌ Redis required for LOCK_BACKEND=redis: {e}")
            raise
        logging.warning(f"⚠️ Redis unavailable, realtime and device channels disabled: {e}")

    container = init_container(ServiceContainer(redis_repository=redis_repo))
    await container.start()

    logging.info("✅ Vacuum Rental API started")
    logging.info(f"Environment: {config.ENVIRONMENT}")
    logging.info(f"Lock backend: {config.LOCK_BACKEND}")
    logging.info(f"Heartbeat recovery policy: {config.HEARTBEAT_RECOVERY_POLICY}")
    logging.info(f"CORS Origins: {config.ALLOWED_ORIGINS}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background jobs, flush notifications, close Redis."""
    logging.info("🔴 Vacuum Rental API shutting down...")
    container = get_container()
    await container.stop()
    await container.redis_repository.disconnect()


# ============================================================================
# ROUTERS
# ============================================================================

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(machines.router, prefix="/api", tags=["Machines"])
app.include_router(sessions.router, prefix="/api", tags=["Sessions"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(devices.router, prefix="/api", tags=["Devices"])
app.include_router(admin.router, prefix="/api", tags=["Admin"])
app.include_router(sse_router.router, prefix="/api")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Vacuum Rental API",
        "version": "1.0.0",
        "docs": "/api/docs",
        "health": "/api/health"
    }
