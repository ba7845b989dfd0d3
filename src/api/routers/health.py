from fastapi import APIRouter
from ...core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "app": settings.app_name,
        "env": settings.app_env,
        "recognition_engine": "azure" if settings.az_di_endpoint and settings.az_di_api_key else "mock",
        "registry": "acra" if settings.acra_api_url and settings.acra_api_key else "reference",
    }
