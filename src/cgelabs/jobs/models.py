"""Job, stage and process event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .events import JobEventStream


class JobKind(str, Enum):
    """Type of pipeline job."""
    BACTERIAL = "bacterial"
    VIRAL = "viral"
    METAGENOMIC = "metagenomic"
    MERGE = "merge"

    @property
    def supports_qc(self) -> bool:
        return self is not JobKind.MERGE


class JobStage(str, Enum):
    """Job lifecycle stage."""
    NOT_STARTED = "not_started"
    RUNNING_QC = "running_qc"
    RUNNING_ANALYSIS = "running_analysis"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.SUCCEEDED, JobStage.FAILED, JobStage.CANCELLED)


class Channel(str, Enum):
    """Output channel of a child process."""
    STDOUT = "stdout"
    STDERR = "stderr"


class LogLevel(str, Enum):
    """Level tag of a run log line."""
    STDOUT = "STDOUT"
    STDERR = "STDERR"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @classmethod
    def for_channel(cls, channel: Channel) -> LogLevel:
        return cls.STDOUT if channel is Channel.STDOUT else cls.STDERR


# ─────────────────────────────────────────────────────────────────────────────
# Process events
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProcessOutput:
    """One line written by the child on stdout or stderr."""
    channel: Channel
    text: str


@dataclass(frozen=True)
class ProcessExit:
    """Terminal event: the child exited (negative code means killed by signal)."""
    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ProcessSpawnError:
    """Terminal event: the child could not be started."""
    message: str

    @property
    def succeeded(self) -> bool:
        return False


ProcessEvent = ProcessOutput | ProcessExit | ProcessSpawnError
ProcessTerminal = ProcessExit | ProcessSpawnError


# ─────────────────────────────────────────────────────────────────────────────
# QC parameters
# ─────────────────────────────────────────────────────────────────────────────


class QCParams(BaseModel):
    """Optional numeric filters for the QC tool.

    Unset fields are left out of the argument vector so the tool's own
    defaults apply.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    min_phred: int | None = Field(default=None, ge=0)
    min_internal_phred: int | None = Field(default=None, ge=0)
    min_average_quality: int | None = Field(default=None, ge=0)
    trim_5_prime: int | None = Field(default=None, ge=0)
    trim_3_prime: int | None = Field(default=None, ge=0)

    def to_args(self) -> list[str]:
        args: list[str] = []
        for name, value in self.model_dump().items():
            if value is not None:
                args.extend([f"--{name}", str(value)])
        return args


_INT32_MAX = 2147483647

QC_PRESETS: dict[JobKind, QCParams] = {
    JobKind.BACTERIAL: QCParams(
        min_length=500,
        max_length=_INT32_MAX,
        min_phred=20,
        min_internal_phred=0,
        min_average_quality=10,
        trim_5_prime=0,
        trim_3_prime=0,
    ),
    # Mpox is around 280k
    JobKind.VIRAL: QCParams(
        min_length=100,
        max_length=500000,
        min_phred=20,
        min_internal_phred=0,
        min_average_quality=10,
        trim_5_prime=0,
        trim_3_prime=0,
    ),
    JobKind.METAGENOMIC: QCParams(
        min_length=500,
        max_length=_INT32_MAX,
        min_phred=20,
        min_internal_phred=0,
        min_average_quality=10,
        trim_5_prime=0,
        trim_3_prime=0,
    ),
}


# ─────────────────────────────────────────────────────────────────────────────
# Job
# ─────────────────────────────────────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """One user-initiated run, keyed by experiment name."""

    id: str
    kind: JobKind
    input_path: Path
    output_dir: Path
    qc_enabled: bool = False
    qc_params: QCParams = field(default_factory=QCParams)
    stage: JobStage = JobStage.NOT_STARTED
    created_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    failure_reason: str | None = None
    events: JobEventStream = field(default_factory=JobEventStream)
    _effective_input_path: Path | None = field(default=None, repr=False)

    @property
    def effective_input_path(self) -> Path | None:
        return self._effective_input_path

    def resolve_input(self, path: Path) -> Path:
        """Fix the path fed to the primary tool. Allowed once."""
        if self._effective_input_path is not None:
            raise RuntimeError(f"Effective input of job {self.id} already resolved")
        self._effective_input_path = path
        return path

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    @property
    def is_cancelled(self) -> bool:
        return self.stage is JobStage.CANCELLED

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.kind.value} {self.stage.value}>"
