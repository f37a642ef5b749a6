"""
Failure Classification.

Every failure that can leave the resolution engine is classified here.

Taxonomy:
- NotFound: absent result, NOT an exception (lookups return None)
- Transient: retryable HTTP status or timeout, handled by the client's
  retry loop and surfaced only after retries are exhausted
- Ingestion: bulk download or parse failure, aborts the rebuild
- Validation: malformed request, handled at the HTTP boundary

Per-line resolution failures never raise out of the pipeline; they become
the `error` string of that line's response item.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"

    # Resource failures
    NOT_FOUND = "not_found"

    # Catalog failures
    TRANSIENT = "transient"
    EXTERNAL_API_ERROR = "external_api_error"
    INGESTION_FAILED = "ingestion_failed"

    # Unknown
    UNKNOWN = "unknown"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_detail(self) -> FailureDetail:
        """Convert to a FailureDetail for API responses."""
        return FailureDetail(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class CatalogRequestError(KnownError):
    """
    A catalog API call failed after retries were exhausted.

    `http_status` is None when the final attempt timed out or never
    reached the server.
    """

    def __init__(self, http_status: int | None, detail: str | None = None):
        self.http_status = http_status
        status_text = str(http_status) if http_status is not None else "no response"
        super().__init__(
            kind=(
                FailureKind.TRANSIENT
                if http_status is None or http_status in (429, 500, 502, 503, 504)
                else FailureKind.EXTERNAL_API_ERROR
            ),
            message=f"Card catalog request failed ({status_text}): {detail or 'Unknown error'}",
            detail=detail,
            suggestion="Retry in a moment.",
            status_code=502,
        )


class CatalogMetadataError(KnownError):
    """The bulk data metadata could not be fetched or was incomplete."""

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.EXTERNAL_API_ERROR,
            message="Card catalog bulk metadata unavailable.",
            detail=detail,
            suggestion="The existing local snapshot stays in use. Retry later.",
            status_code=503,
        )


class IngestionError(KnownError):
    """
    The bulk dump could not be downloaded or parsed.

    The previously committed snapshot and live indices are untouched.
    """

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.INGESTION_FAILED,
            message="Card catalog rebuild failed.",
            detail=detail,
            suggestion="The existing local snapshot stays in use. Retry later.",
            status_code=503,
        )
