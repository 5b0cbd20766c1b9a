"""Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel, Field

from cgelabs.jobs.models import JobKind, QCParams


# ─────────────────────────────────────────────────────────────────────────────
# Job Schemas
# ─────────────────────────────────────────────────────────────────────────────

class JobCreate(BaseModel):
    """Schema for starting a job."""
    name: str = Field(..., min_length=1, max_length=255)
    kind: JobKind
    input_path: str = Field(..., min_length=1)
    qc_enabled: bool = False
    qc_params: QCParams | None = None


class JobResponse(BaseModel):
    """Job summary."""
    name: str
    kind: JobKind
    stage: str
    qc_enabled: bool
    input_path: str
    effective_input_path: str | None
    output_dir: str
    created_at: datetime
    finished_at: datetime | None
    failure_reason: str | None


class CancelResponse(BaseModel):
    name: str
    cancelled: bool


# ─────────────────────────────────────────────────────────────────────────────
# Result Schemas
# ─────────────────────────────────────────────────────────────────────────────

class ResultResponse(BaseModel):
    """One result directory."""
    name: str
    report_exists: bool
    pdf_exists: bool
    qc_pdf_exists: bool
    tool_type: str
    last_modified: datetime

    model_config = {"from_attributes": True}


class DeleteResultResponse(BaseModel):
    name: str
    deleted: bool


class FileSizeCheckRequest(BaseModel):
    path: str = Field(..., min_length=1)


class FileSizeCheckResponse(BaseModel):
    warning: bool
    message: str = ""

    model_config = {"from_attributes": True}


__all__ = [
    "JobCreate",
    "JobResponse",
    "CancelResponse",
    "ResultResponse",
    "DeleteResultResponse",
    "FileSizeCheckRequest",
    "FileSizeCheckResponse",
]
