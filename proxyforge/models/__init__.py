from proxyforge.models.card import (
    CardFace,
    CatalogCard,
    ImageChoice,
    ImageUris,
    NormalizedCard,
    ResolvedCardSummary,
    ResolvedFace,
    is_printable_payload,
    normalize_name,
)
from proxyforge.models.failure import (
    CatalogMetadataError,
    CatalogRequestError,
    FailureDetail,
    FailureKind,
    IngestionError,
    KnownError,
)
from proxyforge.models.resolution import CardPayload, FacePayload, LinePayload, ResolveItem

__all__ = [
    "CardFace",
    "CardPayload",
    "CatalogCard",
    "CatalogMetadataError",
    "CatalogRequestError",
    "FacePayload",
    "FailureDetail",
    "FailureKind",
    "ImageChoice",
    "ImageUris",
    "IngestionError",
    "KnownError",
    "LinePayload",
    "NormalizedCard",
    "ResolveItem",
    "ResolvedCardSummary",
    "ResolvedFace",
    "is_printable_payload",
    "normalize_name",
]
