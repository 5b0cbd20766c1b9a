"""
Argument contract of the external CGE tools.

One table entry per job kind; every entry declares its executable, the label
recorded in result metadata, its QC pipeline tag and any extra arguments.
The argument vectors built here are the interface agreed with the external
tools and must stay in step with them.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cgelabs.config import Settings

from .models import JobKind, QCParams


@dataclass(frozen=True)
class ToolSpec:
    """How to invoke the primary tool of one job kind."""

    kind: JobKind
    label: str
    # Attribute name on ToolSettings holding the executable
    executable_setting: str
    # Leading sub-command, e.g. ("merge",) for cgeutil
    subcommand: tuple[str, ...] = ()
    input_flag: str = "-i"
    name_flag: str = "-name"
    # Tag passed to the QC tool; None when the kind has no QC stage
    qc_type: str | None = None
    requires_database: bool = False

    def executable(self, settings: Settings) -> str:
        return getattr(settings.tools, self.executable_setting)


TOOL_SPECS: dict[JobKind, ToolSpec] = {
    JobKind.BACTERIAL: ToolSpec(
        kind=JobKind.BACTERIAL,
        label="CGE Isolate",
        executable_setting="isolate_executable",
        qc_type="bacterial",
        requires_database=True,
    ),
    JobKind.VIRAL: ToolSpec(
        kind=JobKind.VIRAL,
        label="CGE Virus",
        executable_setting="virus_executable",
        qc_type="viral",
    ),
    JobKind.METAGENOMIC: ToolSpec(
        kind=JobKind.METAGENOMIC,
        label="CGE Metagenomics",
        executable_setting="metagenomics_executable",
        qc_type="metagenomic",
    ),
    JobKind.MERGE: ToolSpec(
        kind=JobKind.MERGE,
        label="FASTQ Merge",
        executable_setting="util_executable",
        subcommand=("merge",),
        input_flag="--dir_path",
        name_flag="--name",
    ),
}


def get_tool_spec(kind: JobKind) -> ToolSpec:
    return TOOL_SPECS[kind]


def build_analysis_args(
    kind: JobKind,
    input_path: Path,
    job_id: str,
    settings: Settings,
) -> list[str]:
    """
    Argument vector for the primary tool (executable excluded).

    Examples:
        bacterial -> -i <input> -name <id> -db_dir <database_dir>
        merge     -> merge --dir_path <dir> --name <id>
    """
    spec = get_tool_spec(kind)
    args = [*spec.subcommand, spec.input_flag, str(input_path), spec.name_flag, job_id]
    if spec.requires_database:
        args.extend(["-db_dir", str(settings.tools.database_dir)])
    return args


def build_qc_args(
    kind: JobKind,
    input_path: Path,
    qc_output_dir: Path,
    params: QCParams | None = None,
) -> list[str]:
    """
    Argument vector for the QC tool (executable excluded).

    Unset numeric filters are omitted so the tool's own defaults apply.

    Raises:
        ValueError: the job kind has no QC stage
    """
    spec = get_tool_spec(kind)
    if spec.qc_type is None:
        raise ValueError(f"Job kind '{kind.value}' does not support QC")
    args = ["-i", str(input_path), "-t", spec.qc_type, "-o", str(qc_output_dir)]
    if params is not None:
        args.extend(params.to_args())
    return args
