"""Health check routes."""

from fastapi import APIRouter

from cgelabs.api.deps import OrchestratorDep, SettingsDep

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(settings: SettingsDep, orchestrator: OrchestratorDep):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.env,
        "active_jobs": len(orchestrator.registry),
    }
