"""Result browsing and input file checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cgelabs.config import Settings, get_settings
from cgelabs.core.exceptions import InvalidJobNameError
from cgelabs.core.logging import get_logger
from cgelabs.jobs.cancellation import remove_output_dir
from cgelabs.jobs.metadata import ResultMetadataStore
from cgelabs.jobs.orchestrator import validate_job_name
from cgelabs.jobs.registry import JobRegistry

logger = get_logger("cgelabs.results")

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ResultSummary:
    """One directory under the results root."""
    name: str
    report_exists: bool
    pdf_exists: bool
    qc_pdf_exists: bool
    tool_type: str
    last_modified: datetime


@dataclass(frozen=True)
class FileSizeAdvisory:
    warning: bool
    message: str = ""


class ResultsService:
    """Read-only listing plus deletion of finished results."""

    def __init__(
        self,
        settings: Settings,
        registry: JobRegistry,
        metadata_store: ResultMetadataStore | None = None,
    ):
        self.settings = settings
        # Shared with the orchestrator; deletion checks it for running jobs
        self.registry = registry
        self.metadata = metadata_store or ResultMetadataStore(
            self.settings.storage.metadata_file_name
        )

    @property
    def results_dir(self) -> Path:
        return self.settings.storage.results_dir

    def report_path(self, name: str) -> Path:
        return self.results_dir / name / "report.txt"

    def pdf_path(self, name: str) -> Path:
        return self.results_dir / name / f"{name}_report.pdf"

    def qc_pdf_path(self, name: str) -> Path:
        return self.results_dir / name / self.settings.storage.qc_subdir / f"{name}_qc_report.pdf"

    def summarize(self, folder: Path) -> ResultSummary:
        name = folder.name
        return ResultSummary(
            name=name,
            report_exists=self.report_path(name).exists(),
            pdf_exists=self.pdf_path(name).exists(),
            qc_pdf_exists=self.qc_pdf_path(name).exists(),
            tool_type=self.metadata.read(folder),
            last_modified=datetime.fromtimestamp(folder.stat().st_mtime, tz=timezone.utc),
        )

    def list_results(self) -> list[ResultSummary]:
        """One entry per result directory, sorted by name."""
        try:
            folders = sorted(
                (entry for entry in self.results_dir.iterdir() if entry.is_dir()),
                key=lambda entry: entry.name,
            )
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.error("Error reading results directory", path=str(self.results_dir), error=str(exc))
            return []

        summaries = []
        for folder in folders:
            try:
                summaries.append(self.summarize(folder))
            except FileNotFoundError:
                # Removed while listing (cancellation or deletion)
                continue
        return summaries

    def delete_result(self, name: str) -> bool:
        """
        Delete a result directory.

        Returns:
            True if the directory is gone afterwards
        """
        try:
            validate_job_name(name)
        except InvalidJobNameError:
            logger.warning("Refusing to delete invalid result name", name=name)
            return False

        if name in self.registry:
            logger.warning("Refusing to delete result of a running job", name=name)
            return False

        folder = self.results_dir / name
        if not folder.is_dir():
            logger.info("Result to delete not found", name=name)
            return False
        return remove_output_dir(folder)


def check_file_size(path: str | Path, settings: Settings | None = None) -> FileSizeAdvisory:
    """
    Advisory check on input size; never blocks a job.

    Small inputs may mean insufficient sequencing depth, large ones a long
    run. Unreadable paths produce no warning.
    """
    storage = (settings or get_settings()).storage
    try:
        size = Path(path).stat().st_size
    except OSError as exc:
        logger.warning("Error checking file size", path=str(path), error=str(exc))
        return FileSizeAdvisory(warning=False)

    size_mb = size / BYTES_PER_MB
    size_gb = size_mb / 1024

    if size_mb < storage.min_input_size_mb:
        return FileSizeAdvisory(
            warning=True,
            message=(
                f"Warning: small dataset ({size_mb:.1f} MB). "
                "This may indicate insufficient sequencing depth."
            ),
        )
    if size_gb > storage.max_input_size_gb:
        return FileSizeAdvisory(
            warning=True,
            message=f"Note: large dataset ({size_gb:.1f} GB). Analysis may take longer.",
        )
    return FileSizeAdvisory(warning=False)
