"""
FastAPI application entry point for the invoice assistant backend.

This module creates the FastAPI app instance and registers all routers.
"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from backend.config import settings
from backend.routes.chat import router as chat_router
from backend.routes.health import router as health_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    """
    Get allowed CORS origins based on environment.

    - production: CORS_ALLOWED_ORIGINS only (none if unset)
    - anything else: all origins, for local development

    Native mobile clients send no Origin header, so CORS only matters for
    browser clients.
    """
    if settings.is_production():
        if settings.CORS_ALLOWED_ORIGINS:
            logger.info(f"CORS configured for production with {len(settings.CORS_ALLOWED_ORIGINS)} allowed origins")
            return list(settings.CORS_ALLOWED_ORIGINS)
        logger.warning(
            "CORS_ALLOWED_ORIGINS not set in production. "
            "No web origins allowed. Set CORS_ALLOWED_ORIGINS for web clients."
        )
        return []

    logger.info(f"CORS configured for {settings.ENVIRONMENT}: allowing all origins")
    return ["*"]


# Create FastAPI app
app = FastAPI(
    title="Invoice Assistant API",
    description="Conversational invoice management backend",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


def _serialize_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors (without the request body) and return a 422."""
    logger.error(
        f"Validation error on {request.method} {request.url.path}: "
        f"{[(e.get('loc'), e.get('type')) for e in exc.errors()]}"
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "details": _serialize_errors(exc),
        }
    )


# Configure CORS with environment-based origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(chat_router)

logger.info("FastAPI app initialized successfully")
