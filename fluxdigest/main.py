from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fluxdigest import __version__
from fluxdigest.api.router import api_router
from fluxdigest.config import get_config, get_settings
from fluxdigest.core.exceptions import FluxDigestError
from fluxdigest.core.logging import get_logger, setup_logging
from fluxdigest.core.scheduler import start_scheduler, stop_scheduler
from fluxdigest.dependencies import Services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()

    services: Services | None = getattr(app.state, "services", None)
    if services is None:
        services = Services.build(get_settings(), get_config())
        app.state.services = services

    if services.settings.jwt_secret_generated:
        logger.warning("jwt_secret_not_set_sessions_reset_on_restart")

    await services.users.init()
    await start_scheduler(services.scheduler, services.config.scheduler)
    logger.bind(data_dir=str(services.settings.data_dir)).info("app_started")
    yield
    # Shutdown
    await stop_scheduler()
    await services.scheduler.wait_idle()
    await services.aclose()


async def flux_digest_error_handler(request: Request, exc: FluxDigestError) -> JSONResponse:
    logger.bind(
        path=request.url.path,
        error=exc.message,
        upstream_status=exc.status_code,
    ).warning("request_failed")
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.message, "status": exc.status_code},
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application; `services` is built at startup when omitted."""
    settings = services.settings if services else get_settings()

    app = FastAPI(
        title="fluxdigest",
        description="AI digests for Miniflux subscriptions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(FluxDigestError, flux_digest_error_handler)
    app.include_router(api_router)

    @app.get("/api/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers."""
        return {"status": "ok", "mode": "miniflux-adapter"}

    return app


app = create_app()
