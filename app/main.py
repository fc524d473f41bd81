from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.api.deps import DB
from app.api.v1.router import api_router
from app.core.exceptions import AppError
from app.database import init_db
from app.jobs.scheduler import JobScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: logging, tables, background scheduler."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    job_scheduler = None
    if settings.SCHEDULER_ENABLED:
        job_scheduler = JobScheduler()
        job_scheduler.start()
    app.state.job_scheduler = job_scheduler

    yield

    # Shutdown
    if job_scheduler is not None:
        job_scheduler.shutdown()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Orders", "description": "Pickup orders: creation, seller actions, payment and cancellation"},
    {"name": "Products", "description": "Listings and their stock"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

API_DESCRIPTION = """
## FoodRescue Pickup API

Buyers reserve discounted surplus food from sellers and collect it in person
with a 4-digit pickup code.

### Order lifecycle

`pending` -> `confirmed` -> `ready_for_pickup` -> `completed`, or `cancelled`
from any non-terminal status. Orders left unfinished for 24 hours are cancelled
automatically and their stock is returned.

### Authentication

All order endpoints require a JWT: `Authorization: Bearer <token>`.

### Responses

Success: `{"success": true, "message": "...", "data": {...}}`

Error: `{"success": false, "message": "...", "code": "..."}`

Money is always an integer amount in minor currency units.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Business rule violations -> error envelope with the mapped status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are a 400, not FastAPI's 422."""
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "code": "validation_error",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


# Global exception handler for anything unexpected
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")

    content = {
        "success": False,
        "message": "Internal server error",
        "code": "internal_error",
    }
    if settings.DEBUG:
        content["error"] = str(exc)
        content["type"] = type(exc).__name__
        content["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )

    response = JSONResponse(status_code=500, content=content)

    # Errors raised past CORSMiddleware lose its headers; add them back
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(db: DB):
    """Health check endpoint with database validation."""
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
