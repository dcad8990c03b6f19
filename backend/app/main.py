# backend/app/main.py
"""
FastAPI application for the driving-school booking backend.

``create_app`` builds the application; the service graph is either passed
in (tests) or built from settings on startup.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .api.dependencies.services import ServiceContainer, build_services
from .core.config import Settings, settings as default_settings
from .core.exceptions import DomainException
from .routes.v1 import bookings as bookings_v1, quota as quota_v1, resilience as resilience_v1
from .routes.v1 import prometheus as prometheus_v1

API_TITLE = "Driving School Booking API"
API_VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    http_exc = exc.to_http_exception()
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"detail": http_exc.detail},
        headers=getattr(http_exc, "headers", None),
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    runtime_settings = settings or default_settings

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup/shutdown without deprecated events."""
        logger.info(f"{API_TITLE} starting up (environment={runtime_settings.environment})")
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(runtime_settings)
        yield
        logger.info(f"{API_TITLE} shutting down")

    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    app.state.services = services
    app.add_exception_handler(DomainException, domain_exception_handler)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(quota_v1.router, prefix="/quota")
    api_v1.include_router(resilience_v1.router, prefix="/resilience")
    app.include_router(api_v1)
    app.include_router(prometheus_v1.router)

    return app


app = create_app()
