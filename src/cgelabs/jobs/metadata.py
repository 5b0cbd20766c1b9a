"""Small metadata record stored next to a successful result."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError, ValidatorFunctionWrapHandler, field_validator

from cgelabs.core.exceptions import MetadataWriteError
from cgelabs.core.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_TOOL = "Unknown"


class ResultMetadata(BaseModel):
    """Written once on success, never modified."""
    tool: str
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def _drop_bad_timestamp(
        cls, value: object, handler: ValidatorFunctionWrapHandler
    ) -> datetime | None:
        # The tool label is still usable when the timestamp is not
        try:
            return handler(value)
        except ValidationError:
            return None


class ResultMetadataStore:
    """Reads and writes ``metadata.json`` inside a job's output directory."""

    def __init__(self, file_name: str = "metadata.json"):
        self.file_name = file_name

    def path_for(self, output_dir: Path) -> Path:
        return Path(output_dir) / self.file_name

    def write(self, output_dir: Path, tool: str) -> ResultMetadata | None:
        """Best effort: failures are logged, never raised."""
        record = ResultMetadata(tool=tool, timestamp=datetime.now(timezone.utc))
        path = self.path_for(output_dir)
        try:
            path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            error = MetadataWriteError(str(path), exc.strerror or str(exc))
            logger.error(error.message)
            return None
        return record

    def load(self, output_dir: Path) -> ResultMetadata | None:
        path = self.path_for(output_dir)
        try:
            return ResultMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as exc:
            logger.warning("Unreadable result metadata", path=str(path), error=str(exc))
            return None

    def read(self, output_dir: Path) -> str:
        """Tool label of a result, or ``"Unknown"``."""
        record = self.load(output_dir)
        return record.tool if record is not None else UNKNOWN_TOOL
