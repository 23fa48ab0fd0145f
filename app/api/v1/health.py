from fastapi import APIRouter

from app.core.config import settings
from app.services.llm import requirements_llm_enabled

router = APIRouter()


@router.get("/health", summary="Health Check", description="Check the health status of the engine and its optional sources.")
async def health_check():
    return {
        "status": "healthy",
        "marketEvidenceConfigured": bool(settings.adzuna_app_id and settings.adzuna_app_key),
        "llmEnrichmentEnabled": requirements_llm_enabled(),
    }
