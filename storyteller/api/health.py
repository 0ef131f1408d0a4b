"""
Health check endpoints
"""

import time

from fastapi import APIRouter, Request
from pydantic import BaseModel

from storyteller.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str
    version: str
    timestamp: float
    public_assistant_configured: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint
    Returns 200 if the service is running
    """
    logger.debug("health_check_requested")
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        timestamp=time.time(),
        public_assistant_configured=bool(settings.assistant_id),
    )
