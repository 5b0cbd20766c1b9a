"""Buffered per-job execution log, written once at the end of a job."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from cgelabs.core.exceptions import LogFlushError
from cgelabs.core.logging import get_logger

from .models import LogLevel

logger = get_logger(__name__)


def format_line(level: LogLevel, text: str, when: datetime | None = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"[{when.isoformat()}] [{level.value}] {text.strip()}"


class RunLog:
    """In-memory log buffers keyed by job id.

    ``flush`` hands a buffer over to the filesystem and forgets it, so a job
    is written at most once.
    """

    def __init__(self, file_name: str = "analysis.log"):
        self.file_name = file_name
        self._buffers: dict[str, list[str]] = {}

    def append(self, job_id: str, level: LogLevel, text: str) -> str:
        line = format_line(level, text)
        self._buffers.setdefault(job_id, []).append(line)
        return line

    def lines(self, job_id: str) -> list[str]:
        return list(self._buffers.get(job_id, []))

    def has_buffer(self, job_id: str) -> bool:
        return job_id in self._buffers

    def discard(self, job_id: str) -> None:
        """Drop a buffer without writing it (cancelled jobs)."""
        self._buffers.pop(job_id, None)

    def flush(self, job_id: str, output_dir: Path) -> Path | None:
        """
        Write the buffer of ``job_id`` to ``output_dir/<file_name>``.

        Never raises: a failed write is reported on the application log.

        Returns:
            Path of the written file, or None when nothing was written
            (no buffer, directory gone, or write failure)
        """
        lines = self._buffers.pop(job_id, None)
        if lines is None:
            return None

        output_dir = Path(output_dir)
        if not output_dir.is_dir():
            logger.info("Output directory gone, log not written", job_id=job_id, path=str(output_dir))
            return None

        log_path = output_dir / self.file_name
        try:
            _write_atomic(log_path, "\n".join(lines) + "\n")
        except OSError as exc:
            error = LogFlushError(str(log_path), exc.strerror or str(exc))
            logger.error(error.message, job_id=job_id)
            return None

        logger.info("Run log written", job_id=job_id, path=str(log_path), lines=len(lines))
        return log_path


def _write_atomic(path: Path, content: str) -> None:
    """Write via a temporary sibling and rename, so readers never see half a file."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
