"""FastAPI application for the Loyalty Service."""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from libs.common.arq_config import close_arq_pool
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from libs.db.guard import StoreUnavailable
from services.loyalty_service.routers.admin import router as admin_router
from services.loyalty_service.routers.public import router as loyalty_router
from slowapi.errors import RateLimitExceeded

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_arq_pool()


async def store_unavailable_handler(
    request: Request, exc: StoreUnavailable
) -> JSONResponse:
    """Outcome unknown: the client should re-check state before retrying."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable", "reason": "transient_error"},
        headers={"Retry-After": "1"},
    )


def create_app() -> FastAPI:
    """Create and configure the Loyalty Service FastAPI app."""
    app = FastAPI(
        title="Loyalty Service",
        version="0.1.0",
        description="QR stamp cards: earn authorization, stamp ledger and rewards.",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "loyalty"}

    # Member-facing routes
    app.include_router(loyalty_router)

    # Admin routes
    app.include_router(admin_router)

    return app


app = create_app()
