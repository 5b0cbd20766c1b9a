"""API routes."""

from .health import router as health_router
from .jobs import qc_presets_router
from .jobs import router as jobs_router
from .results import files_router
from .results import router as results_router

__all__ = [
    "health_router",
    "jobs_router",
    "qc_presets_router",
    "results_router",
    "files_router",
]
