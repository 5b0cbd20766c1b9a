"""Core module - exceptions and logging."""

from .exceptions import (
    ArtifactNotFoundError,
    CGELabsException,
    DuplicateJobError,
    InvalidInputPathError,
    InvalidJobNameError,
    JobNotFoundError,
    LogFlushError,
    MetadataWriteError,
    ResultNotFoundError,
    SpawnError,
    ToolExitError,
    install_exception_handlers,
)
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    setup_logging,
)

__all__ = [
    # Exceptions
    "CGELabsException",
    "DuplicateJobError",
    "InvalidJobNameError",
    "InvalidInputPathError",
    "JobNotFoundError",
    "ResultNotFoundError",
    "SpawnError",
    "ToolExitError",
    "ArtifactNotFoundError",
    "LogFlushError",
    "MetadataWriteError",
    "install_exception_handlers",
    # Logging
    "setup_logging",
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
]
