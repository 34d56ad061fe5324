"""FastAPI REST API server for the analytics dashboard."""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.errors import AnalyticsError, RateLimitError
from common.settings import Settings
from db.postgres import close_db, configure_engine, init_db
from db.warehouse import WarehouseService
from rest.config.common import ERROR_RESPONSES, ErrorBody, ErrorResponse
from rest.routers.analytics import router as analytics_router
from rest.routers.api_keys import router as api_keys_router
from rest.routers.integrations import router as integrations_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="[%(asctime)s: %(levelname)s] %(name)s - %(message)s",
    )


def _error(status_code: int, body: ErrorBody, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=body).model_dump(),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": {"code", "message"}}``."""

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        headers = None
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
        return _error(exc.status_code, ErrorBody(**exc.to_dict()), headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())[1:]) or 'request'}: {e.get('msg')}"
            for e in errors
        )
        return _error(400, ErrorBody(code="VALIDATION_ERROR", message=message or "Invalid request"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error(500, ErrorBody(code="INTERNAL_ERROR", message="Internal server error"))


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application for ``settings`` (read from the environment by default)."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        configure_engine(
            settings.database_url,
            echo=settings.db_echo,
            pool_timeout=settings.db_pool_timeout,
        )
        await init_db()
        yield
        # Shutdown
        await app.state.warehouse.close()
        await close_db()

    app = FastAPI(
        title="Analytics Dashboard API",
        description="Product analytics metrics behind API-key or session auth",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.warehouse = WarehouseService(settings)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include API routers
    app.include_router(api_keys_router, prefix="/api", responses=ERROR_RESPONSES)
    app.include_router(analytics_router, prefix="/api", responses=ERROR_RESPONSES)
    app.include_router(integrations_router, prefix="/api", responses=ERROR_RESPONSES)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    settings = app.state.settings
    uvicorn.run(
        "rest.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
