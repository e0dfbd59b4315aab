"""
InsureMe USSD - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from insureme.core.config import settings
from insureme.core.logging import setup_logging, get_logger
from insureme.core.middleware import setup_middleware, setup_exception_handlers
from insureme.api.routes import router as api_router
from insureme.db import models  # noqa: F401  registers every table on Base.metadata
from insureme.db.database import engine, Base, AsyncSessionLocal
from insureme.db.seed import seed_default_plans

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "USSD gateway and M-Pesa callbacks."},
    {"name": "ussd", "description": "JSON test harness for the USSD menu and session inspection."},
    {"name": "payments", "description": "M-Pesa STK push initiation and payment lookups."},
    {"name": "plans", "description": "Insurance plan catalog."},
    {"name": "policies", "description": "Policy purchase and listing."},
    {"name": "admin", "description": "Diagnostics. Requires X-Admin-API-Key."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="USSD micro-insurance platform: menu sessions, policies and M-Pesa premium payments.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging, rate limit)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID", "X-Admin-API-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Create tables and seed the plan catalog"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    async with AsyncSessionLocal() as session:
        await seed_default_plans(session)


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up. No dependency is checked.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database and the M-Pesa circuit breaker. "
        "Returns 503 with status=degraded when either is unavailable."
    ),
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "mpesa": "ok"}
                }
            },
        },
        503: {
            "description": "At least one dependency unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "mpesa": "error: mpesa_circuit_open",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    """Readiness probe"""
    from insureme.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
