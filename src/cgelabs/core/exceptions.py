"""CGELabs custom exceptions and error handlers."""

import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .logging import get_logger

logger = get_logger("cgelabs")


# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class CGELabsException(Exception):
    """Base exception for CGELabs."""

    def __init__(
        self,
        message: str,
        code: str = "CGELABS_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class DuplicateJobError(CGELabsException):
    """Job id collides with a running job or an existing output directory."""

    def __init__(self, job_id: str, reason: str):
        super().__init__(
            message=f"Experiment '{job_id}' already exists: {reason}",
            code="DUPLICATE_JOB",
            status_code=status.HTTP_409_CONFLICT,
            details={"job_id": job_id, "reason": reason},
        )
        self.job_id = job_id


class InvalidJobNameError(CGELabsException):
    """Experiment name contains characters outside the allowed set."""

    def __init__(self, job_id: str):
        super().__init__(
            message=(
                "Experiment name can only contain letters, numbers, "
                f"underscores, and hyphens: {job_id!r}"
            ),
            code="INVALID_JOB_NAME",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"job_id": job_id},
        )


class InvalidInputPathError(CGELabsException):
    """Input path cannot be resolved (unknown ~user, NUL byte, ...)."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Invalid input path {path!r}: {reason}",
            code="INVALID_INPUT_PATH",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"path": path, "reason": reason},
        )


class JobNotFoundError(CGELabsException):
    """No job with this id is known to the orchestrator."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job not found: {job_id}",
            code="JOB_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"job_id": job_id},
        )


class ResultNotFoundError(CGELabsException):
    """Result directory does not exist."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Result not found: {name}",
            code="RESULT_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"name": name},
        )


class SpawnError(CGELabsException):
    """Executable is missing or could not be launched."""

    def __init__(self, executable: str, reason: str):
        super().__init__(
            message=f"Process error: {reason}",
            code="SPAWN_ERROR",
            details={"executable": executable},
        )
        self.executable = executable
        self.reason = reason


class ToolExitError(CGELabsException):
    """Tool ran but exited with a non-zero code."""

    def __init__(self, executable: str, exit_code: int):
        super().__init__(
            message=f"Process failed with exit code {exit_code}",
            code="TOOL_EXIT_ERROR",
            details={"executable": executable, "exit_code": exit_code},
        )
        self.executable = executable
        self.exit_code = exit_code


class ArtifactNotFoundError(CGELabsException):
    """No file in the QC output directory matched the allowed suffixes."""

    def __init__(self, directory: str, suffixes: list[str]):
        super().__init__(
            message=f"No file ending with {', '.join(suffixes)} found in {directory}",
            code="ARTIFACT_NOT_FOUND",
            details={"directory": directory, "suffixes": list(suffixes)},
        )


class LogFlushError(CGELabsException):
    """Run log could not be written."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Failed to write log file {path}: {reason}",
            code="LOG_FLUSH_ERROR",
            details={"path": path},
        )


class MetadataWriteError(CGELabsException):
    """Result metadata could not be written."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Failed to write metadata {path}: {reason}",
            code="METADATA_WRITE_ERROR",
            details={"path": path},
        )


# ─────────────────────────────────────────────────────────────────────────────
# Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────

def install_exception_handlers(app: FastAPI, include_trace: bool = False) -> None:
    """Install exception handlers on FastAPI app."""

    @app.exception_handler(CGELabsException)
    async def cgelabs_exception_handler(request: Request, exc: CGELabsException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.code,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTP_ERROR",
                "message": str(exc.detail),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error", errors=exc.errors())
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", error=str(exc))
        content = {
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        }
        if include_trace:
            content["trace"] = traceback.format_exc()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content,
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation errors with non-serialisable context values stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors
