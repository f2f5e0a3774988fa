from fastapi import APIRouter

from app.core.resilience import get_breakers_status
from app.core.settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "gcse-platform-api",
        "env": settings.app_env,
        "webhook_secret_configured": bool(settings.workos_webhook_secret),
        "circuit_breakers": get_breakers_status(),
    }
