"""CGELabs job orchestration.

Components:
- JobRegistry: live process handles per job
- locate_artifact: QC output discovery
- ToolInvoker: spawning and output streaming
- PipelineOrchestrator: QC -> analysis state machine
- RunLog: buffered execution log
- ResultMetadataStore: metadata.json of successful results
- CancellationPath: kill and clean up
"""

from .artifacts import locate_artifact
from .cancellation import CancellationPath, remove_output_dir
from .events import JobEvent, JobEventStream, JobFinished, JobOutput, JobStageChanged
from .invoker import ProcessStream, ToolInvoker
from .metadata import UNKNOWN_TOOL, ResultMetadata, ResultMetadataStore
from .models import (
    QC_PRESETS,
    Channel,
    Job,
    JobKind,
    JobStage,
    LogLevel,
    ProcessExit,
    ProcessOutput,
    ProcessSpawnError,
    QCParams,
)
from .orchestrator import PipelineOrchestrator, validate_job_name
from .registry import JobHandle, JobRegistry
from .run_log import RunLog
from .tools import TOOL_SPECS, ToolSpec, build_analysis_args, build_qc_args, get_tool_spec

__all__ = [
    # Orchestration
    "PipelineOrchestrator",
    "validate_job_name",
    "JobRegistry",
    "JobHandle",
    "CancellationPath",
    "remove_output_dir",
    # Processes
    "ToolInvoker",
    "ProcessStream",
    "ProcessOutput",
    "ProcessExit",
    "ProcessSpawnError",
    "Channel",
    # Tools
    "TOOL_SPECS",
    "ToolSpec",
    "get_tool_spec",
    "build_analysis_args",
    "build_qc_args",
    # Persistence
    "RunLog",
    "ResultMetadata",
    "ResultMetadataStore",
    "UNKNOWN_TOOL",
    "locate_artifact",
    # Models
    "Job",
    "JobKind",
    "JobStage",
    "LogLevel",
    "QCParams",
    "QC_PRESETS",
    # Events
    "JobEvent",
    "JobEventStream",
    "JobOutput",
    "JobStageChanged",
    "JobFinished",
]
