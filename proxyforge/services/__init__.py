"""
ProxyForge services.

Card catalog access and decklist resolution.
"""

from proxyforge.services.bulk_store import BulkDataStore, CardIndex, LocalMetadata
from proxyforge.services.catalog_client import (
    CatalogClient,
    CollectionLookup,
    CollectionResult,
    select_best_image,
    to_resolved_card,
)
from proxyforge.services.resolution_pipeline import resolve_decklist, resolve_line
from proxyforge.services.resolution_service import ResolutionContext, ResolutionService

__all__ = [
    # Local bulk snapshot
    "BulkDataStore",
    "CardIndex",
    "LocalMetadata",
    # Live catalog API
    "CatalogClient",
    "CollectionLookup",
    "CollectionResult",
    "select_best_image",
    "to_resolved_card",
    # Resolution
    "ResolutionContext",
    "ResolutionService",
    "resolve_decklist",
    "resolve_line",
]
