"""Results routes."""

from fastapi import APIRouter

from cgelabs.api.deps import ResultsServiceDep, SettingsDep
from cgelabs.core.exceptions import ResultNotFoundError
from cgelabs.schemas import (
    DeleteResultResponse,
    FileSizeCheckRequest,
    FileSizeCheckResponse,
    ResultResponse,
)
from cgelabs.services import check_file_size

router = APIRouter(prefix="/results", tags=["results"])
files_router = APIRouter(prefix="/files", tags=["results"])


@router.get("", response_model=list[ResultResponse])
async def list_results(results: ResultsServiceDep):
    """All result directories with report availability and tool type."""
    return [ResultResponse.model_validate(item) for item in results.list_results()]


@router.delete("/{name}", response_model=DeleteResultResponse)
async def delete_result(name: str, results: ResultsServiceDep):
    """Delete a finished result. Running jobs must be cancelled instead."""
    if not (results.results_dir / name).is_dir():
        raise ResultNotFoundError(name)
    return DeleteResultResponse(name=name, deleted=results.delete_result(name))


@files_router.post("/size-check", response_model=FileSizeCheckResponse)
async def size_check(data: FileSizeCheckRequest, settings: SettingsDep):
    """Advisory warning for unusually small or large inputs."""
    return FileSizeCheckResponse.model_validate(check_file_size(data.path, settings))
