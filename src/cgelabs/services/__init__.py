"""Business logic services."""

from .results import FileSizeAdvisory, ResultsService, ResultSummary, check_file_size

__all__ = [
    "FileSizeAdvisory",
    "ResultsService",
    "ResultSummary",
    "check_file_size",
]
