"""
Pipeline orchestration.

Runs one job as an asyncio task:

    NotStarted -> RunningQC -> RunningAnalysis -> Succeeded | Failed
    NotStarted -----------------> RunningAnalysis
    RunningQC | RunningAnalysis -> Cancelled   (external request)

QC failure never aborts a job; the analysis stage then receives the
original input instead of the QC artifact.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, AsyncIterator, Mapping

from cgelabs.config import Settings, get_settings
from cgelabs.core.exceptions import (
    ArtifactNotFoundError,
    CGELabsException,
    DuplicateJobError,
    InvalidInputPathError,
    InvalidJobNameError,
    JobNotFoundError,
    SpawnError,
    ToolExitError,
)
from cgelabs.core.logging import bind_context, get_logger

from .artifacts import locate_artifact
from .cancellation import CancellationPath
from .events import JobEvent, JobFinished, JobOutput, JobStageChanged
from .invoker import ToolInvoker
from .metadata import ResultMetadataStore
from .models import (
    Job,
    JobKind,
    JobStage,
    LogLevel,
    ProcessOutput,
    ProcessSpawnError,
    ProcessTerminal,
    QCParams,
    utc_now,
)
from .registry import JobHandle, JobRegistry
from .run_log import RunLog
from .tools import build_analysis_args, build_qc_args, get_tool_spec

logger = get_logger(__name__)

JOB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_job_name(job_id: str) -> str:
    if not job_id or not JOB_NAME_PATTERN.match(job_id):
        raise InvalidJobNameError(job_id)
    return job_id


def stage_error(terminal: ProcessTerminal, executable: str) -> CGELabsException:
    """Error describing a failed stage process."""
    if isinstance(terminal, ProcessSpawnError):
        return SpawnError(executable, terminal.message)
    return ToolExitError(executable, terminal.exit_code)


def describe_failure(terminal: ProcessTerminal | None, executable: str = "tool") -> str:
    if terminal is None:
        return "Process ended without reporting a status"
    return stage_error(terminal, executable).message


class PipelineOrchestrator:
    """Starts, tracks and cancels jobs.

    All methods must be called from the event loop that runs the jobs.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: JobRegistry | None = None,
        invoker: ToolInvoker | None = None,
        run_log: RunLog | None = None,
        metadata_store: ResultMetadataStore | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or JobRegistry()
        self.invoker = invoker or ToolInvoker.from_settings(self.settings.tools)
        self.run_log = run_log or RunLog(self.settings.storage.log_file_name)
        self.metadata = metadata_store or ResultMetadataStore(
            self.settings.storage.metadata_file_name
        )
        self.cancellation = CancellationPath(self.registry, self.run_log)
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def require_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def is_running(self, job_id: str) -> bool:
        return job_id in self.registry

    def events(self, job_id: str) -> AsyncIterator[JobEvent]:
        """Replay and follow the event stream of a job."""
        return self.require_job(job_id).events.subscribe()

    async def wait(self, job_id: str) -> JobStage:
        """Wait until the job reaches a terminal stage."""
        job = self.require_job(job_id)
        await job.events.wait_finished()
        return job.stage

    # ─────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────

    def validate_new_job(self, job_id: str) -> Path:
        """
        Check that a job may start under this name.

        Returns:
            The job's output directory

        Raises:
            InvalidJobNameError: name has characters outside [A-Za-z0-9_-]
            DuplicateJobError: name is running or its output directory exists
        """
        validate_job_name(job_id)
        if job_id in self.registry:
            raise DuplicateJobError(job_id, "a job with this name is already running")
        output_dir = self.settings.output_dir_for(job_id)
        if output_dir.exists():
            raise DuplicateJobError(job_id, f"output directory {output_dir} exists")
        return output_dir

    async def start_job(
        self,
        job_id: str,
        kind: JobKind | str,
        input_path: str | Path,
        qc_enabled: bool = False,
        qc_params: QCParams | Mapping[str, Any] | None = None,
    ) -> Job:
        """
        Register a job and schedule its pipeline.

        Returns as soon as the job is registered; progress is reported
        through ``job.events``.

        Args:
            job_id: Experiment name; also the output directory name
            kind: bacterial, viral, metagenomic or merge
            input_path: Reads file, or source directory for merge
            qc_enabled: Run QC before analysis (ignored for merge)
            qc_params: Optional QC filters; unset values are not sent

        Raises:
            InvalidJobNameError, DuplicateJobError, InvalidInputPathError:
                before anything is registered or spawned
        """
        kind = JobKind(kind)
        output_dir = self.validate_new_job(job_id)

        if qc_params is None:
            params = QCParams()
        elif isinstance(qc_params, QCParams):
            params = qc_params
        else:
            params = QCParams.model_validate(dict(qc_params))

        if qc_enabled and not kind.supports_qc:
            logger.warning("QC requested for a job kind without QC stage, ignoring",
                           job_id=job_id, kind=kind.value)
            qc_enabled = False

        try:
            resolved_input = Path(input_path).expanduser().resolve()
        except (RuntimeError, ValueError, OSError) as exc:
            raise InvalidInputPathError(str(input_path), str(exc)) from exc

        job = Job(
            id=job_id,
            kind=kind,
            input_path=resolved_input,
            output_dir=output_dir,
            qc_enabled=qc_enabled,
            qc_params=params,
        )
        # Registered last: a failure above must not leave a stale entry
        handle = self.registry.register(job_id)
        self._jobs[job_id] = job

        task = asyncio.create_task(self._run(job, handle), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda done: self._forget_task(job_id, done))

        logger.info("Job started", job_id=job_id, kind=kind.value, qc=qc_enabled,
                    input=str(job.input_path))
        return job

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a running job: terminate its process and delete its output.

        Idempotent. Finished jobs are left alone; an already cancelled job
        only gets its directory removal retried.

        Returns:
            True if this call cancelled a running job
        """
        job = self._jobs.get(job_id)
        if job is None:
            logger.info("Cancel ignored, job unknown", job_id=job_id)
            return False

        if job.is_cancelled:
            await asyncio.to_thread(self.cancellation.cleanup, job.output_dir)
            return False

        if job.is_terminal:
            logger.info("Cancel ignored, job already finished", job_id=job_id,
                        stage=job.stage.value)
            return False

        job.stage = JobStage.CANCELLED
        job.finished_at = utc_now()
        self.cancellation.signal(job_id, self.registry.get(job_id))
        await asyncio.to_thread(self.cancellation.cleanup, job.output_dir)

        job.events.publish(JobFinished(JobStage.CANCELLED.value, "Cancelled by user"))
        logger.info("Job cancelled", job_id=job_id)
        return True

    async def shutdown(self) -> None:
        """Stop every running job without touching its output."""
        for job_id in list(self._tasks):
            self.registry.terminate(job_id)
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def join(self) -> None:
        """Wait until every scheduled pipeline task has returned."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────────────
    # Pipeline
    # ─────────────────────────────────────────────────────────────────────

    def _forget_task(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def _emit(self, job: Job, level: LogLevel, text: str) -> None:
        self.run_log.append(job.id, level, text)
        job.events.publish(JobOutput(level=level.value, text=text, stage=job.stage.value))

    def _set_stage(self, job: Job, stage: JobStage) -> None:
        job.stage = stage
        job.events.publish(JobStageChanged(stage.value))

    def _finish(self, job: Job, stage: JobStage, message: str | None = None) -> None:
        if job.is_terminal:
            return
        job.stage = stage
        job.finished_at = utc_now()
        if stage is JobStage.FAILED:
            job.failure_reason = message
        job.events.publish(JobFinished(stage.value, message))
        logger.info("Job finished", job_id=job.id, stage=stage.value)

    async def _run(self, job: Job, handle: JobHandle) -> None:
        bind_context(job_id=job.id, kind=job.kind.value)
        spec = get_tool_spec(job.kind)
        try:
            if job.qc_enabled:
                effective_input = await self._run_qc(job, handle)
            else:
                effective_input = job.input_path
            if job.is_cancelled:
                return
            job.resolve_input(effective_input)

            terminal = await self._run_stage(
                job,
                handle,
                JobStage.RUNNING_ANALYSIS,
                spec.executable(self.settings),
                build_analysis_args(job.kind, effective_input, job.id, self.settings),
            )
            if job.is_cancelled:
                return

            if terminal is not None and terminal.succeeded:
                self._emit(job, LogLevel.INFO, "Process completed successfully with exit code 0")
                await asyncio.to_thread(self.metadata.write, job.output_dir, spec.label)
                await asyncio.to_thread(self.run_log.flush, job.id, job.output_dir)
                self._finish(job, JobStage.SUCCEEDED)
            else:
                reason = describe_failure(terminal, spec.executable(self.settings))
                self._emit(job, LogLevel.ERROR, reason)
                await asyncio.to_thread(self.run_log.flush, job.id, job.output_dir)
                self._finish(job, JobStage.FAILED, reason)
                logger.warning("Analysis failed", reason=reason)

        except asyncio.CancelledError:
            if not job.is_terminal:
                self.run_log.discard(job.id)
                self._finish(job, JobStage.FAILED, "Interrupted by shutdown")
            raise
        except Exception as exc:
            logger.exception("Pipeline error")
            if not job.is_terminal:
                self._emit(job, LogLevel.ERROR, f"Internal error: {exc}")
                await asyncio.to_thread(self.run_log.flush, job.id, job.output_dir)
                self._finish(job, JobStage.FAILED, str(exc))
        finally:
            self.registry.unregister(job.id, handle)

    async def _run_qc(self, job: Job, handle: JobHandle) -> Path:
        """Run the QC stage and decide which file the analysis gets."""
        storage = self.settings.storage
        qc_dir = job.output_dir / storage.qc_subdir

        terminal = await self._run_stage(
            job,
            handle,
            JobStage.RUNNING_QC,
            self.settings.tools.qc_executable,
            build_qc_args(job.kind, job.input_path, qc_dir, job.qc_params),
        )
        if job.is_cancelled:
            return job.input_path

        if terminal is not None and terminal.succeeded:
            try:
                artifact = await asyncio.to_thread(
                    locate_artifact, qc_dir, storage.qc_artifact_suffixes
                )
            except ArtifactNotFoundError as exc:
                reason = exc.message
            else:
                self._emit(job, LogLevel.INFO, f"QC completed, using filtered reads: {artifact}")
                return artifact
        else:
            reason = describe_failure(terminal, self.settings.tools.qc_executable)

        self._emit(job, LogLevel.ERROR, f"QC failed ({reason})")
        self._emit(job, LogLevel.INFO, f"Falling back to original file: {job.input_path}")
        logger.warning("QC failed, using original input", job_id=job.id, reason=reason)
        return job.input_path

    async def _run_stage(
        self,
        job: Job,
        handle: JobHandle,
        stage: JobStage,
        executable: str,
        args: list[str],
    ) -> ProcessTerminal | None:
        """
        Run one external process to completion.

        Returns:
            The terminal process event, or None if the job was cancelled
            before the process could be attached
        """
        if job.is_cancelled:
            return None
        self._set_stage(job, stage)
        stream = await self.invoker.invoke(executable, args)
        if job.is_cancelled:
            stream.terminate()
            return None
        self.registry.attach_process(job.id, stream)

        terminal: ProcessTerminal | None = None
        async for event in stream.events():
            if isinstance(event, ProcessOutput):
                if not job.is_cancelled:
                    self._emit(job, LogLevel.for_channel(event.channel), event.text)
            else:
                terminal = event
        return terminal
