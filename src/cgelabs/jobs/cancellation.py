"""Kill a running job and remove its partial output."""

from __future__ import annotations

import shutil
from pathlib import Path

from cgelabs.core.logging import get_logger

from .registry import JobHandle, JobRegistry
from .run_log import RunLog

logger = get_logger(__name__)


def remove_output_dir(output_dir: Path) -> bool:
    """
    Recursively delete a job's output directory.

    The killed tool may still be writing, so deletion can fail; that is
    logged and reported as False rather than raised.
    """
    output_dir = Path(output_dir)
    if not output_dir.exists():
        return True
    try:
        shutil.rmtree(output_dir)
    except FileNotFoundError:
        return True
    except OSError as exc:
        logger.warning("Could not remove output directory", path=str(output_dir), error=str(exc))
        return False
    logger.info("Output directory removed", path=str(output_dir))
    return True


class CancellationPath:
    """Terminates a job's process and drops everything it left behind.

    The directory is removed right after the signal is sent, without waiting
    for the child to exit.
    """

    def __init__(self, registry: JobRegistry, run_log: RunLog):
        self.registry = registry
        self.run_log = run_log

    def signal(self, job_id: str, handle: JobHandle | None = None) -> bool:
        """Terminate the attached process and forget the job."""
        terminated = self.registry.terminate(job_id)
        self.registry.unregister(job_id, handle)
        self.run_log.discard(job_id)
        return terminated

    def cleanup(self, output_dir: Path) -> bool:
        return remove_output_dir(output_dir)
