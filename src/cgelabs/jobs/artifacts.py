"""Locate the reads file produced by the QC stage."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from cgelabs.core.exceptions import ArtifactNotFoundError


def locate_artifact(directory: str | Path, allowed_suffixes: Sequence[str]) -> Path:
    """
    Find the QC output file by name.

    Only immediate children are scanned. Suffixes are tried in order, so an
    earlier suffix (e.g. ``.fastq.gz``) wins over a later one (``.fastq``)
    whenever both are present. Within one suffix, names are compared in
    sorted order. File content is not inspected.

    Args:
        directory: QC output directory
        allowed_suffixes: Ordered list of accepted file name endings

    Returns:
        Path of the matching file

    Raises:
        ArtifactNotFoundError: directory missing or no name matches
    """
    directory = Path(directory)
    try:
        entries = sorted(
            (entry for entry in directory.iterdir() if entry.is_file()),
            key=lambda entry: entry.name,
        )
    except (FileNotFoundError, NotADirectoryError):
        raise ArtifactNotFoundError(str(directory), list(allowed_suffixes)) from None

    for suffix in allowed_suffixes:
        for entry in entries:
            if entry.name.endswith(suffix):
                return entry

    raise ArtifactNotFoundError(str(directory), list(allowed_suffixes))
