from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.config import settings
from api.database import close_db, get_db, init_db
from api.logging_config import setup_logging
from api.middleware.correlation import CorrelationIdMiddleware
from api.schemas.common import ERROR_RESPONSES

# Registers every table on Base.metadata
import api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("billing_api_starting", env=settings.ENVIRONMENT, version=settings.APP_VERSION)
    await init_db()
    yield
    await close_db()
    logger.info("billing_api_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


def _error(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


# ---------------------------------------------------------------------------
# Exception handlers: every failure leaves as {"error": {"code", "message"}}
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)
    if isinstance(detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)
    return _error(exc.status_code, "HTTP_ERROR", str(detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "VALIDATION_ERROR", "Request validation failed", details=exc.errors())


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("unhandled_database_error", path=request.url.path, error=str(exc))
    return _error(500, "PERSISTENCE_ERROR", "A database error occurred")


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    checks = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_check_db_failed", error=str(e))
        checks["db"] = "error"

    healthy = all(v == "ok" for v in checks.values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "checks": checks,
    }


# --- Routers ---
from api.routes.payments import router as payments_router  # noqa: E402
from api.routes.subscriptions import router as subscriptions_router  # noqa: E402
from api.routes.tenants import router as tenants_router  # noqa: E402

for router, prefix, tag in (
    (payments_router, "/api/v1/payments", "Payments"),
    (subscriptions_router, "/api/v1/subscriptions", "Subscriptions"),
    (tenants_router, "/api/v1/tenants", "Tenants"),
):
    app.include_router(router, prefix=prefix, tags=[tag], responses=ERROR_RESPONSES)
