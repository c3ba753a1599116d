from typing import Any, Dict

from fastapi import APIRouter

from ...core.event_management import health_check_events
from ...core.setting import get_settings

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Service health including pub/sub status. Pub/sub is never a hard dependency."""
    settings = get_settings()
    pubsub = await health_check_events()
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "version": settings.APP_VERSION,
        "pubsub": pubsub,
    }
