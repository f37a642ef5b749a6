"""
Shared FastAPI dependencies.
"""

from fastapi import HTTPException, Request, status

from proxyforge.services.resolution_service import ResolutionService


def get_resolution_service(request: Request) -> ResolutionService:
    """
    The process-wide resolution service, created in the app lifespan.

    Raises 503 while the service is not available.
    """
    service: ResolutionService | None = getattr(request.app.state, "resolution_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Card catalog is not available yet.",
        )
    return service
