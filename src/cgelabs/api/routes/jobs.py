"""Jobs routes."""

import json

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from cgelabs.api.deps import OrchestratorDep
from cgelabs.core.logging import get_logger
from cgelabs.jobs import Job, JobKind, QC_PRESETS, QCParams
from cgelabs.jobs.events import event_to_dict
from cgelabs.schemas import CancelResponse, JobCreate, JobResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = get_logger("cgelabs.api.jobs")


def to_response(job: Job) -> JobResponse:
    return JobResponse(
        name=job.id,
        kind=job.kind,
        stage=job.stage.value,
        qc_enabled=job.qc_enabled,
        input_path=str(job.input_path),
        effective_input_path=(
            str(job.effective_input_path) if job.effective_input_path else None
        ),
        output_dir=str(job.output_dir),
        created_at=job.created_at,
        finished_at=job.finished_at,
        failure_reason=job.failure_reason,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────────────────────

@router.get("", response_model=list[JobResponse])
async def list_jobs(orchestrator: OrchestratorDep):
    """Jobs started since the service came up."""
    return [to_response(job) for job in orchestrator.jobs()]


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(data: JobCreate, orchestrator: OrchestratorDep):
    """Start a job. Duplicate or invalid names are rejected before any process starts."""
    job = await orchestrator.start_job(
        data.name,
        data.kind,
        data.input_path,
        qc_enabled=data.qc_enabled,
        qc_params=data.qc_params,
    )
    return to_response(job)


@router.get("/{name}", response_model=JobResponse)
async def get_job(name: str, orchestrator: OrchestratorDep):
    """Get job by name."""
    return to_response(orchestrator.require_job(name))


@router.get("/{name}/events")
async def stream_job_events(name: str, orchestrator: OrchestratorDep):
    """
    Newline-delimited JSON stream of job events.

    Replays everything emitted so far, then follows the job live. The last
    line is always the terminal ``finished`` event.
    """
    events = orchestrator.events(name)

    async def ndjson():
        async for event in events:
            yield json.dumps(event_to_dict(event)) + "\n"

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")


@router.post(
    "/{name}/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(name: str, orchestrator: OrchestratorDep):
    """Cancel a running job. Repeating the request is harmless."""
    cancelled = await orchestrator.cancel_job(name)
    return CancelResponse(name=name, cancelled=cancelled)


qc_presets_router = APIRouter(prefix="/qc-presets", tags=["jobs"])


@qc_presets_router.get("/{kind}", response_model=QCParams, response_model_exclude_none=True)
async def get_qc_preset(kind: JobKind):
    """Recommended QC filters for a job kind; merge has none (empty object)."""
    return QC_PRESETS.get(kind, QCParams())
