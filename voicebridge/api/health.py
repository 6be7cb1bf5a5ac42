"""Health check endpoint."""
import logging

from fastapi import APIRouter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """Liveness probe for the hosting platform."""
    logger.debug("[HEALTH] Health check requested")
    return {"status": "healthy"}
