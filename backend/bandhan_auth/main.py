"""
Bandhan Verification API - Main Application
Tiered identity verification (phone OTP, DigiLocker, video selfie), consent
and location retention, with security middleware
"""
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from loguru import logger
import sys

from bandhan_auth.config import settings
from bandhan_auth.database import Database
from bandhan_auth.errors import ApiError, ErrorCode, api_error_handler
from bandhan_auth.routers import auth, consent, digilocker, location, user, verification
from bandhan_auth.middleware.rate_limiter import RateLimitMiddleware
from bandhan_auth.middleware.audit_logger import AuditLogMiddleware
from bandhan_auth.services.digilocker_service import DigiLockerService
from bandhan_auth.services.liveness import HttpLivenessChecker
from bandhan_auth.services.location_service import RetentionCleanupWorker
from bandhan_auth.services.sms_provider import Msg91OtpProvider
from bandhan_auth.services.vault import CredentialVault, build_key_provider
from bandhan_auth.utils.clock import utcnow


# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level="DEBUG" if settings.DEBUG else "INFO"
)
if settings.ENVIRONMENT != "test":
    logger.add(
        "logs/bandhan_{time:YYYY-MM-DD}.log",
        rotation="1 day",
        retention="30 days",
        compression="gz",
        level="INFO"
    )


async def start_components(app: FastAPI):
    """Construct the storage handle and provider clients once per process"""
    timeout = settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    app.state.clock = utcnow
    app.state.db = Database(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        environment=settings.ENVIRONMENT,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
    if settings.ENVIRONMENT != "production":
        await app.state.db.create_all()

    app.state.otp_provider = Msg91OtpProvider(
        settings.MSG91_AUTH_KEY, settings.MSG91_TEMPLATE_ID, settings.MSG91_BASE_URL, timeout
    )
    app.state.digilocker = DigiLockerService.from_settings(settings)
    app.state.vault = CredentialVault(build_key_provider(settings), timeout)
    app.state.liveness = HttpLivenessChecker(settings.LIVENESS_API_URL, settings.LIVENESS_API_KEY, timeout)

    app.state.cleanup_worker = RetentionCleanupWorker(
        app.state.db,
        settings.CLEANUP_INTERVAL_SECONDS,
        retention_days=settings.LOCATION_RETENTION_DAYS,
        purge_after_days=settings.LOCATION_PURGE_AFTER_DAYS,
    )
    if settings.CLEANUP_ENABLED:
        await app.state.cleanup_worker.start()


async def stop_components(app: FastAPI):
    await app.state.cleanup_worker.stop()
    await app.state.otp_provider.aclose()
    await app.state.digilocker.aclose()
    await app.state.liveness.aclose()
    await app.state.db.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    os.makedirs("logs", exist_ok=True)

    await start_components(app)
    logger.info("Verification components initialized")

    yield

    # Shutdown
    await stop_components(app)
    logger.info("Application shutdown complete")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with detailed messages"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": "Validation error",
            "messageHi": "सत्यापन त्रुटि",
            "errors": errors
        }
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.opt(exception=exc).error(f"Unhandled exception on {request.url.path}: {type(exc).__name__}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ApiError().to_dict()
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Tiered identity verification for Bandhan: phone OTP, DigiLocker and video selfie, "
                    "with DPDP Act 2023 consent and retention controls",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Security Middleware - HTTPS redirect in production
    if settings.ENVIRONMENT == "production":
        app.add_middleware(HTTPSRedirectMiddleware)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"]
    )

    # Custom Middleware
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(AuditLogMiddleware)

    # Exception Handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Include Routers
    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(digilocker.router, prefix="/auth", tags=["DigiLocker Integration"])
    app.include_router(verification.router, prefix="/auth", tags=["Verification"])
    app.include_router(consent.router, prefix="/consent", tags=["Consent"])
    app.include_router(location.router, prefix="/location", tags=["Location"])
    app.include_router(user.router, tags=["User"])

    # Health Check Endpoint
    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint"""
        database_ok = await request.app.state.db.ping()
        return JSONResponse(
            status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "healthy" if database_ok else "degraded",
                "database": "connected" if database_ok else "unreachable",
                "version": settings.APP_VERSION,
                "environment": settings.ENVIRONMENT
            }
        )

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint"""
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.DEBUG else "Documentation disabled in production"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bandhan_auth.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
