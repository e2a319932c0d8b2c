"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import error_handler_middleware
from src.api.middleware.latency_logging import latency_logging_middleware
from src.api.routes import admin_orders, auth, health, verification, vouchers, webhooks
from src.api.routes.checkout import orders_router, router as checkout_router
from src.core.config import get_settings
from src.core.rate_limiter import init_rate_limiter, shutdown_rate_limiter
from src.core.stripe import configure_stripe
from src.schemas.common import API_VERSION
from src.services.code_store import init_code_store, shutdown_code_store
from src.services.session_store import init_session_store, shutdown_session_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Configures Stripe and starts the sweep tasks of the in-memory stores.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    configure_stripe()
    logger.info("Stripe SDK configured")

    await init_rate_limiter()
    logger.info("Rate limiter initialized")

    await init_code_store()
    logger.info("Verification code store initialized")

    await init_session_store()
    logger.info("Session store initialized")

    yield

    await shutdown_session_store()
    await shutdown_code_store()
    await shutdown_rate_limiter()
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Linkist Orders API",
        description="Ordering, verification and payment backend for NFC business cards",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware added last runs first; latency logging sees formatted error responses
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)

    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(auth.router)
    api_v1_router.include_router(verification.router)
    api_v1_router.include_router(checkout_router)
    api_v1_router.include_router(orders_router)
    api_v1_router.include_router(vouchers.router)
    api_v1_router.include_router(admin_orders.router)
    api_v1_router.include_router(webhooks.router)
    app.include_router(api_v1_router)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
