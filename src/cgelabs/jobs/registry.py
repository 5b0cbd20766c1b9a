"""In-memory table of active jobs and their live process handles.

Lives only as long as the host process; after a restart running external
tools are not re-adopted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from cgelabs.core.exceptions import DuplicateJobError
from cgelabs.core.logging import get_logger

logger = get_logger(__name__)


class ProcessHandle(Protocol):
    """What the registry needs from a running tool invocation."""

    @property
    def is_alive(self) -> bool: ...

    def terminate(self) -> bool: ...


@dataclass
class JobHandle:
    """Registry slot for one job; holds at most one process at a time."""
    job_id: str
    process: ProcessHandle | None = None


class JobRegistry:
    """Maps job id to its live handle. Accessed from the event loop only."""

    def __init__(self) -> None:
        self._handles: dict[str, JobHandle] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def active_ids(self) -> list[str]:
        return sorted(self._handles)

    def register(self, job_id: str) -> JobHandle:
        if job_id in self._handles:
            raise DuplicateJobError(job_id, "a job with this name is already running")
        handle = JobHandle(job_id=job_id)
        self._handles[job_id] = handle
        logger.debug("Job registered", job_id=job_id)
        return handle

    def get(self, job_id: str) -> JobHandle | None:
        return self._handles.get(job_id)

    def attach_process(self, job_id: str, process: ProcessHandle) -> JobHandle:
        """Attach the process of the next stage, replacing the previous one.

        Raises:
            KeyError: job is not registered
            RuntimeError: the previously attached process is still alive
        """
        handle = self._handles[job_id]
        if handle.process is not None and handle.process.is_alive:
            raise RuntimeError(f"Job {job_id} already has a live process attached")
        handle.process = process
        return handle

    def terminate(self, job_id: str) -> bool:
        """Signal the attached process. Returns False if there was nothing to signal."""
        handle = self._handles.get(job_id)
        if handle is None or handle.process is None:
            return False
        terminated = handle.process.terminate()
        if terminated:
            logger.info("Termination signal sent", job_id=job_id)
        return terminated

    def unregister(self, job_id: str, handle: JobHandle | None = None) -> None:
        """Remove a job. Safe to call repeatedly.

        When ``handle`` is given, the entry is only removed if it is that
        handle, so a late cleanup cannot drop a newer job with the same id.
        """
        current = self._handles.get(job_id)
        if current is None:
            return
        if handle is not None and current is not handle:
            return
        del self._handles[job_id]
        logger.debug("Job unregistered", job_id=job_id)
