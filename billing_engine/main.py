from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from billing_engine.config import settings
from billing_engine.api.v1.router import api_router
from billing_engine.core.exceptions import BillingEngineError
from billing_engine.core.logging_config import configure_logging
from billing_engine.database import init_db, async_session_factory


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create missing tables (migrations manage production schemas)
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")


API_DESCRIPTION = """
Billing rule resolution and invoice line generation for contract logistics projects.

### Flow

1. Record deliveries and labor logs against a project
2. Configure billing rules, price lists and the master template
3. Preview the invoice of a closed period
4. Generate it, then approve, send and mark it paid

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Validation failed, no applicable rule, unresolved price or bad formula |
| 404 | Project, rule or invoice does not exist |
| 409 | Period already invoiced or invalid status transition |
| 500 | Internal Server Error |
"""


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


def _error_body(request: Request, message, error_type: str, details=None) -> dict:
    body = {
        "error": message,
        "type": error_type,
        "path": str(request.url.path),
        "method": request.method,
    }
    if details:
        body["details"] = details
    return body


@app.exception_handler(BillingEngineError)
async def billing_error_handler(request: Request, exc: BillingEngineError):
    """Domain errors carry their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_type} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(_error_body(request, exc.message, exc.error_type, exc.details)),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are reported as 400 ValidationError."""
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            _error_body(request, "Request validation failed", "ValidationError", {"errors": exc.errors()})
        ),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unexpected errors; the traceback is only exposed in DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error_detail = _error_body(request, str(exc), type(exc).__name__)
    if settings.DEBUG:
        error_detail["traceback"] = traceback.format_exc()
    return JSONResponse(status_code=500, content=error_detail)


# ==================== Health ====================

async def _database_status() -> str:
    try:
        async with async_session_factory() as session:
            await session.scalar(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        return f"error: {e}"
    return "connected"


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus a database round trip; 503 when the database is unreachable."""
    database = await _database_status()
    body = {
        "status": "healthy" if database == "connected" else "unhealthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database},
    }
    if database != "connected":
        return JSONResponse(status_code=503, content=body)
    return body


@app.get("/", tags=["Root"])
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "api": api_router.prefix,
        "docs": app.docs_url,
    }


def run() -> None:
    """Serve the API with uvicorn (the billing-engine console script)."""
    import uvicorn
    uvicorn.run(
        "billing_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
