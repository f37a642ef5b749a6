from proxyforge.api.health import router as health_router
from proxyforge.api.resolve import router as resolve_router
from proxyforge.api.search import router as search_router
from proxyforge.api.stats import router as stats_router

__all__ = [
    "health_router",
    "resolve_router",
    "search_router",
    "stats_router",
]
