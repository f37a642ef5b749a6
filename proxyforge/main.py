import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from proxyforge.api import health_router, resolve_router, search_router, stats_router
from proxyforge.config import settings
from proxyforge.db.database import init_db
from proxyforge.models.failure import KnownError
from proxyforge.services.resolution_service import ResolutionService

logger = logging.getLogger(__name__)


async def load_catalog(service: ResolutionService) -> None:
    """Load or refresh the bulk snapshot; lookups use the live API meanwhile."""
    try:
        await service.store.initialize()
    except KnownError as e:
        logger.error("Card catalog unavailable: %s (%s)", e.message, e.detail)
        return
    logger.info("Card catalog loaded: %d printings", service.store.card_count)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()

    service = await ResolutionService.create(settings, load_catalog=False)
    app.state.resolution_service = service

    loader: asyncio.Task[None] | None = None
    if settings.load_catalog_on_startup:
        loader = asyncio.create_task(load_catalog(service))
    if settings.auto_refresh:
        service.start_auto_refresh()

    yield

    if loader is not None:
        loader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await loader
    await service.aclose()
    app.state.resolution_service = None


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("proxyforge"),
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(resolve_router)
app.include_router(search_router)
app.include_router(stats_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Explainable failures keep their own status code and detail."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_detail().model_dump(mode="json")},
    )
