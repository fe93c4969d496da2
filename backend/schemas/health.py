"""
Health check endpoint schemas.
"""

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response model for GET /health (public, no auth)."""

    status: str = Field(
        default="ok",
        description="Always 'ok' while the API is responding",
        examples=["ok"]
    )
    service: str = Field(
        default="invoice-assistant-backend",
        description="Service identifier",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "ok",
                "service": "invoice-assistant-backend"
            }
        }
    )
