"""
Health check route.

PUBLIC endpoint (no authentication) used by load balancers and deployment
checks. It never touches the database or the model.
"""

from fastapi import APIRouter

from backend.schemas.health import HealthResponse
from backend.utils.logging import get_logger

logger = get_logger(__name__)

# Mounted at root level in main.py
router = APIRouter(tags=["system"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="Public health check. Returns the service name and an 'ok' status.",
    status_code=200,
)
async def health_check() -> HealthResponse:
    """
    Example response:
        {
            "status": "ok",
            "service": "invoice-assistant-backend"
        }
    """
    logger.debug("Health check endpoint called")
    return HealthResponse()
