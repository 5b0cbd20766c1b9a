"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from cgelabs.config import Settings
from cgelabs.jobs import PipelineOrchestrator
from cgelabs.services import ResultsService


# ─────────────────────────────────────────────────────────────────────────────
# Application state
# ─────────────────────────────────────────────────────────────────────────────

def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Orchestrator created in the application lifespan."""
    return request.app.state.orchestrator


def get_results_service(request: Request) -> ResultsService:
    return request.app.state.results


# ─────────────────────────────────────────────────────────────────────────────
# Type aliases for cleaner signatures
# ─────────────────────────────────────────────────────────────────────────────

OrchestratorDep = Annotated[PipelineOrchestrator, Depends(get_orchestrator)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ResultsServiceDep = Annotated[ResultsService, Depends(get_results_service)]
