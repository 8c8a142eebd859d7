"""FastAPI application for the affiliate engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from affiliate_engine.api.rate_limit import limiter
from affiliate_engine.api.routes import router
from affiliate_engine.engine import AffiliateEngine
from affiliate_engine.logging_config import get_logger
from affiliate_engine.settings import settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("app_starting", env=settings.env)
    app.state.engine.db.create_tables()
    yield
    logger.info("app_shutting_down")
    app.state.engine.close()


def create_app(engine: AffiliateEngine | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        engine: Engine to serve (defaults to one over the global database)

    Returns:
        Configured FastAPI app
    """
    is_production = settings.env == "production"

    app = FastAPI(
        title="Affiliate Engine API",
        description="Affiliate attribution and commission settlement",
        version="0.1.0",
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.engine = engine or AffiliateEngine()

    # Rate limiting (shared instance from rate_limit module)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": "0.1.0", "env": settings.env}

    return app
