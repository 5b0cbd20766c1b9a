"""
Unit tests for the pipeline orchestrator

Tools are replaced by scripted in-memory processes (see conftest.FakeInvoker).

Covers:
1. Analysis without QC
2. QC success, QC failure and fallback to the original input
3. Analysis failure and spawn errors
4. Cancellation during each stage, idempotent cancel
5. Name validation and duplicates
6. Shutdown
"""

import asyncio
import json

import pytest

from cgelabs.core.exceptions import (
    DuplicateJobError,
    InvalidInputPathError,
    InvalidJobNameError,
    JobNotFoundError,
    SpawnError,
    ToolExitError,
)
from cgelabs.jobs.events import JobFinished, JobOutput, JobStageChanged
from cgelabs.jobs.models import Channel, JobStage, ProcessExit, ProcessSpawnError, QCParams
from cgelabs.jobs.orchestrator import (
    PipelineOrchestrator,
    describe_failure,
    stage_error,
    validate_job_name,
)
from cgelabs.services.results import ResultsService


@pytest.fixture
def orchestrator(settings, fake_invoker):
    return PipelineOrchestrator(settings, invoker=fake_invoker)


def qc_writes(results_dir, name, filename="filtered.fastq.gz"):
    def effect():
        qc_dir = results_dir / name / "qc"
        qc_dir.mkdir(parents=True, exist_ok=True)
        (qc_dir / filename).write_bytes(b"\x1f\x8b")
    return effect


async def finish(orchestrator, job_id):
    stage = await asyncio.wait_for(orchestrator.wait(job_id), 2)
    await asyncio.wait_for(orchestrator.join(), 2)
    return stage


def log_lines(results_dir, name):
    return (results_dir / name / "analysis.log").read_text().splitlines()


class TestNames:

    @pytest.mark.parametrize("name", ["exp1", "Sample_01", "run-2024-05", "A"])
    def test_valid(self, name):
        assert validate_job_name(name) == name

    @pytest.mark.parametrize("name", ["", "exp 1", "../etc", "a/b", "exp.1", "ü"])
    def test_invalid(self, name):
        with pytest.raises(InvalidJobNameError):
            validate_job_name(name)

    def test_describe_failure(self):
        assert describe_failure(ProcessExit(2)) == "Process failed with exit code 2"
        assert describe_failure(ProcessSpawnError("cgeqc: not found")) == "Process error: cgeqc: not found"
        assert describe_failure(None) == "Process ended without reporting a status"

    def test_stage_error_types(self):
        exited = stage_error(ProcessExit(2), "cgevirus")
        assert isinstance(exited, ToolExitError)
        assert exited.code == "TOOL_EXIT_ERROR"
        assert exited.details == {"executable": "cgevirus", "exit_code": 2}

        spawn = stage_error(ProcessSpawnError("cgeqc: not found"), "cgeqc")
        assert isinstance(spawn, SpawnError)
        assert spawn.details == {"executable": "cgeqc"}
        assert spawn.message == describe_failure(ProcessSpawnError("cgeqc: not found"), "cgeqc")


class TestAnalysisOnly:
    """Jobs without QC"""

    @pytest.mark.asyncio
    async def test_success(self, orchestrator, fake_invoker, settings, results_dir,
                           sample_fastq, make_tool_dir):
        """Test: bacterial run writes log and metadata, then leaves the registry"""
        fake_invoker.script(
            "cgeisolate",
            lines=[(Channel.STDOUT, "Running KMA"), (Channel.STDERR, "low depth on contig 4")],
            effects=make_tool_dir("exp1"),
        )

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq)
        assert orchestrator.is_running("exp1")

        assert await finish(orchestrator, "exp1") is JobStage.SUCCEEDED

        expected_input = str(sample_fastq.resolve())
        assert fake_invoker.calls == [(
            "cgeisolate",
            ["-i", expected_input, "-name", "exp1", "-db_dir", str(settings.tools.database_dir)],
        )]
        assert str(job.effective_input_path) == expected_input
        assert job.finished_at is not None
        assert not orchestrator.is_running("exp1")

        lines = log_lines(results_dir, "exp1")
        assert lines[0].endswith("[STDOUT] Running KMA")
        assert lines[1].endswith("[STDERR] low depth on contig 4")
        assert lines[-1].endswith("[INFO] Process completed successfully with exit code 0")

        metadata = json.loads((results_dir / "exp1" / "metadata.json").read_text())
        assert metadata["tool"] == "CGE Isolate"

    @pytest.mark.asyncio
    async def test_event_sequence(self, orchestrator, fake_invoker, sample_fastq, make_tool_dir):
        fake_invoker.script("cgevirus", lines=[(Channel.STDOUT, "x")], effects=make_tool_dir("v1"))

        job = await orchestrator.start_job("v1", "viral", sample_fastq)
        await finish(orchestrator, "v1")

        events = job.events.history
        assert isinstance(events[0], JobStageChanged)
        assert events[0].stage == "running_analysis"
        assert isinstance(events[1], JobOutput)
        assert events[1].stage == "running_analysis"
        assert isinstance(events[-1], JobFinished)
        assert events[-1].succeeded

    @pytest.mark.asyncio
    async def test_failure_exit_code(self, orchestrator, fake_invoker, results_dir,
                                     sample_fastq, make_tool_dir):
        fake_invoker.script(
            "cgemetagenomics",
            lines=[(Channel.STDERR, "database missing")],
            exit_code=2,
            effects=make_tool_dir("meta1", report=False),
        )

        job = await orchestrator.start_job("meta1", "metagenomic", sample_fastq)

        assert await finish(orchestrator, "meta1") is JobStage.FAILED
        assert job.failure_reason == "Process failed with exit code 2"
        lines = log_lines(results_dir, "meta1")
        assert lines[0].endswith("[STDERR] database missing")
        assert lines[-1].endswith("[ERROR] Process failed with exit code 2")
        assert not (results_dir / "meta1" / "metadata.json").exists()
        assert not orchestrator.is_running("meta1")

    @pytest.mark.asyncio
    async def test_failure_keeps_output_order(self, orchestrator, fake_invoker, results_dir,
                                              sample_fastq, make_tool_dir):
        """Test: interleaved output is logged in arrival order, then the exit code"""
        output = [
            (Channel.STDOUT, "L1"),
            (Channel.STDERR, "E1"),
            (Channel.STDOUT, "L2"),
            (Channel.STDOUT, "L3"),
            (Channel.STDERR, "E2"),
            (Channel.STDOUT, "L4"),
            (Channel.STDOUT, "L5"),
        ]
        fake_invoker.script(
            "cgevirus",
            lines=output,
            exit_code=3,
            effects=make_tool_dir("v3", report=False),
        )

        await orchestrator.start_job("v3", "viral", sample_fastq)

        assert await finish(orchestrator, "v3") is JobStage.FAILED
        lines = log_lines(results_dir, "v3")
        assert len(lines) == len(output) + 1
        for line, (channel, text) in zip(lines, output):
            assert line.endswith(f"[{channel.name}] {text}")
        assert lines[-1].endswith("[ERROR] Process failed with exit code 3")

    @pytest.mark.asyncio
    async def test_failure_without_output_dir(self, orchestrator, fake_invoker, results_dir,
                                              sample_fastq):
        """Test: tool never created its directory, no log is written anywhere"""
        fake_invoker.script("cgevirus", exit_code=1)

        await orchestrator.start_job("v2", "viral", sample_fastq)

        assert await finish(orchestrator, "v2") is JobStage.FAILED
        assert not (results_dir / "v2").exists()
        assert not orchestrator.run_log.has_buffer("v2")

    @pytest.mark.asyncio
    async def test_spawn_error(self, orchestrator, fake_invoker, sample_fastq):
        fake_invoker.script("cgeisolate", spawn_error="cgeisolate: No such file or directory")

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq)

        assert await finish(orchestrator, "exp1") is JobStage.FAILED
        assert job.failure_reason == "Process error: cgeisolate: No such file or directory"
        assert not orchestrator.is_running("exp1")


class TestQualityControl:
    """QC stage and fallback"""

    @pytest.mark.asyncio
    async def test_qc_artifact_feeds_analysis(self, orchestrator, fake_invoker, results_dir,
                                              sample_fastq, make_tool_dir):
        fake_invoker.script("cgeqc", lines=[(Channel.STDOUT, "filtering")],
                            effects=qc_writes(results_dir, "exp1"))
        fake_invoker.script("cgeisolate", effects=make_tool_dir("exp1"))

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq, qc_enabled=True,
                                           qc_params=QCParams(min_length=500, min_phred=20))

        assert await finish(orchestrator, "exp1") is JobStage.SUCCEEDED
        artifact = results_dir / "exp1" / "qc" / "filtered.fastq.gz"

        (qc_exe, qc_args), (analysis_exe, analysis_args) = fake_invoker.calls
        assert qc_exe == "cgeqc"
        assert qc_args == [
            "-i", str(sample_fastq.resolve()), "-t", "bacterial",
            "-o", str(results_dir / "exp1" / "qc"),
            "--min_length", "500", "--min_phred", "20",
        ]
        assert analysis_exe == "cgeisolate"
        assert analysis_args[:2] == ["-i", str(artifact)]
        assert job.effective_input_path == artifact
        assert fake_invoker.overlapping_starts == 0

        stages = [e.stage for e in job.events.history if isinstance(e, JobStageChanged)]
        assert stages == ["running_qc", "running_analysis"]
        assert any("QC completed, using filtered reads" in line
                   for line in log_lines(results_dir, "exp1"))

    @pytest.mark.asyncio
    async def test_qc_params_from_mapping(self, orchestrator, fake_invoker, results_dir,
                                          sample_fastq, make_tool_dir):
        fake_invoker.script("cgeqc", effects=qc_writes(results_dir, "v1", "reads.fq"))
        fake_invoker.script("cgevirus", effects=make_tool_dir("v1"))

        await orchestrator.start_job("v1", "viral", sample_fastq, qc_enabled=True,
                                     qc_params={"max_length": 500000})
        await finish(orchestrator, "v1")

        qc_args = fake_invoker.calls[0][1]
        assert qc_args[-2:] == ["--max_length", "500000"]
        assert fake_invoker.calls[1][1][1].endswith("reads.fq")

    @pytest.mark.asyncio
    async def test_qc_failure_falls_back(self, orchestrator, fake_invoker, results_dir,
                                         sample_fastq, make_tool_dir):
        """Test: QC exits non-zero, analysis runs on the original input"""
        fake_invoker.script("cgeqc", exit_code=1)
        fake_invoker.script("cgeisolate", effects=make_tool_dir("exp1"))

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq, qc_enabled=True)

        assert await finish(orchestrator, "exp1") is JobStage.SUCCEEDED
        assert fake_invoker.calls[1][1][:2] == ["-i", str(sample_fastq.resolve())]
        assert job.effective_input_path == sample_fastq.resolve()

        lines = log_lines(results_dir, "exp1")
        assert any("[ERROR] QC failed (Process failed with exit code 1)" in line for line in lines)
        assert any("[INFO] Falling back to original file" in line for line in lines)

    @pytest.mark.asyncio
    async def test_qc_without_artifact_falls_back(self, orchestrator, fake_invoker, results_dir,
                                                  sample_fastq, make_tool_dir):
        def qc_summary_only():
            qc_dir = results_dir / "exp1" / "qc"
            qc_dir.mkdir(parents=True)
            (qc_dir / "summary.txt").write_text("no reads kept")

        fake_invoker.script("cgeqc", effects=qc_summary_only)
        fake_invoker.script("cgeisolate", effects=make_tool_dir("exp1"))

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq, qc_enabled=True)

        assert await finish(orchestrator, "exp1") is JobStage.SUCCEEDED
        assert job.effective_input_path == sample_fastq.resolve()
        assert any("QC failed (No file ending with" in line
                   for line in log_lines(results_dir, "exp1"))

    @pytest.mark.asyncio
    async def test_qc_spawn_error_falls_back(self, orchestrator, fake_invoker, sample_fastq,
                                             make_tool_dir):
        fake_invoker.script("cgeqc", spawn_error="cgeqc: No such file or directory")
        fake_invoker.script("cgevirus", effects=make_tool_dir("v1"))

        job = await orchestrator.start_job("v1", "viral", sample_fastq, qc_enabled=True)

        assert await finish(orchestrator, "v1") is JobStage.SUCCEEDED
        assert job.effective_input_path == sample_fastq.resolve()

    @pytest.mark.asyncio
    async def test_merge_ignores_qc(self, orchestrator, fake_invoker, tmp_path, make_tool_dir):
        source = tmp_path / "run7"
        source.mkdir()
        fake_invoker.script("cgeutil", effects=make_tool_dir("merged"))

        job = await orchestrator.start_job("merged", "merge", source, qc_enabled=True)

        assert job.qc_enabled is False
        assert await finish(orchestrator, "merged") is JobStage.SUCCEEDED
        assert fake_invoker.calls == [
            ("cgeutil", ["merge", "--dir_path", str(source.resolve()), "--name", "merged"])
        ]


class TestCancellation:
    """Cancel during each stage"""

    @pytest.mark.asyncio
    async def test_cancel_during_qc(self, orchestrator, fake_invoker, results_dir, sample_fastq):
        """Test: QC killed, directory removed, analysis never started"""
        fake_invoker.script("cgeqc", lines=[(Channel.STDOUT, "filtering")], hold=True)

        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq, qc_enabled=True)
        await fake_invoker.wait_for_calls(1)
        partial = results_dir / "exp1" / "qc"
        partial.mkdir(parents=True)
        (partial / "partial.fastq").write_text("@r\n")

        assert await orchestrator.cancel_job("exp1") is True

        assert fake_invoker.processes[0].terminated
        assert not (results_dir / "exp1").exists()
        assert job.stage is JobStage.CANCELLED
        assert not orchestrator.is_running("exp1")

        await asyncio.wait_for(orchestrator.join(), 2)
        assert len(fake_invoker.calls) == 1
        assert not (results_dir / "exp1").exists()
        assert job.stage is JobStage.CANCELLED
        assert job.effective_input_path is None

        last = job.events.history[-1]
        assert isinstance(last, JobFinished)
        assert last.stage == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_during_analysis(self, orchestrator, fake_invoker, results_dir,
                                          sample_fastq, make_tool_dir):
        fake_invoker.script("cgevirus", hold=True, effects=make_tool_dir("v1"))

        job = await orchestrator.start_job("v1", "viral", sample_fastq)
        await fake_invoker.wait_for_calls(1)
        (results_dir / "v1").mkdir()

        assert await orchestrator.cancel_job("v1") is True
        await asyncio.wait_for(orchestrator.join(), 2)

        assert job.stage is JobStage.CANCELLED
        assert not (results_dir / "v1").exists()
        assert not orchestrator.run_log.has_buffer("v1")
        assert await orchestrator.wait("v1") is JobStage.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, orchestrator, fake_invoker, results_dir,
                                        sample_fastq):
        fake_invoker.script("cgevirus", hold=True)

        await orchestrator.start_job("v1", "viral", sample_fastq)
        await fake_invoker.wait_for_calls(1)

        assert await orchestrator.cancel_job("v1") is True
        assert await orchestrator.cancel_job("v1") is False
        await orchestrator.join()
        assert await orchestrator.cancel_job("v1") is False
        assert sum(1 for p in fake_invoker.processes if p.terminated) == 1

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, orchestrator):
        assert await orchestrator.cancel_job("nothing") is False

    @pytest.mark.asyncio
    async def test_cancel_finished_job_keeps_results(self, orchestrator, fake_invoker,
                                                     results_dir, sample_fastq, make_tool_dir):
        fake_invoker.script("cgevirus", effects=make_tool_dir("v1"))
        job = await orchestrator.start_job("v1", "viral", sample_fastq)
        await finish(orchestrator, "v1")

        assert await orchestrator.cancel_job("v1") is False
        assert job.stage is JobStage.SUCCEEDED
        assert (results_dir / "v1" / "report.txt").exists()

    @pytest.mark.asyncio
    async def test_name_reusable_after_cancel(self, orchestrator, fake_invoker, sample_fastq,
                                              make_tool_dir):
        """Test: a late cleanup of the cancelled run does not drop the new run"""
        fake_invoker.script("cgevirus", hold=True)
        fake_invoker.script("cgevirus", hold=True, effects=make_tool_dir("v1"))

        await orchestrator.start_job("v1", "viral", sample_fastq)
        await fake_invoker.wait_for_calls(1)
        await orchestrator.cancel_job("v1")

        second = await orchestrator.start_job("v1", "viral", sample_fastq)
        await fake_invoker.wait_for_calls(2)
        for _ in range(5):
            await asyncio.sleep(0)
        assert orchestrator.is_running("v1")

        fake_invoker.processes[1].release()
        assert await finish(orchestrator, "v1") is JobStage.SUCCEEDED
        assert second.stage is JobStage.SUCCEEDED


class TestAdmission:
    """Names and duplicates are checked before anything is spawned"""

    @pytest.mark.asyncio
    async def test_invalid_name(self, orchestrator, fake_invoker, sample_fastq):
        with pytest.raises(InvalidJobNameError):
            await orchestrator.start_job("bad name", "viral", sample_fastq)
        assert fake_invoker.calls == []
        assert len(orchestrator.registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_running(self, orchestrator, fake_invoker, sample_fastq):
        fake_invoker.script("cgevirus", hold=True)
        await orchestrator.start_job("v1", "viral", sample_fastq)
        await fake_invoker.wait_for_calls(1)

        with pytest.raises(DuplicateJobError):
            await orchestrator.start_job("v1", "viral", sample_fastq)
        assert len(fake_invoker.calls) == 1

        fake_invoker.processes[0].release()
        await finish(orchestrator, "v1")

    @pytest.mark.asyncio
    async def test_existing_output_dir(self, orchestrator, fake_invoker, results_dir, sample_fastq):
        (results_dir / "old").mkdir()

        with pytest.raises(DuplicateJobError, match="exists"):
            await orchestrator.start_job("old", "bacterial", sample_fastq)
        assert fake_invoker.calls == []

    @pytest.mark.asyncio
    async def test_unknown_kind(self, orchestrator, sample_fastq):
        with pytest.raises(ValueError):
            await orchestrator.start_job("x1", "plasmid", sample_fastq)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_path", ["~nosuchuser_cgelabs/reads.fastq", "bad\x00path.fastq"])
    async def test_unresolvable_input_leaves_name_free(self, orchestrator, fake_invoker,
                                                       sample_fastq, make_tool_dir, bad_path):
        """Test: a path that cannot be resolved is rejected without registering the name"""
        with pytest.raises(InvalidInputPathError):
            await orchestrator.start_job("exp1", "viral", bad_path)

        assert len(orchestrator.registry) == 0
        assert orchestrator.get_job("exp1") is None
        assert fake_invoker.calls == []

        fake_invoker.script("cgevirus", effects=make_tool_dir("exp1"))
        await orchestrator.start_job("exp1", "viral", sample_fastq)
        assert await finish(orchestrator, "exp1") is JobStage.SUCCEEDED

    def test_unknown_job_lookup(self, orchestrator):
        assert orchestrator.get_job("nope") is None
        with pytest.raises(JobNotFoundError):
            orchestrator.require_job("nope")


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_stops_jobs_without_deleting(self, orchestrator, fake_invoker,
                                                        results_dir, sample_fastq):
        fake_invoker.script("cgeisolate", hold=True)
        job = await orchestrator.start_job("exp1", "bacterial", sample_fastq)
        await fake_invoker.wait_for_calls(1)
        (results_dir / "exp1").mkdir()

        await asyncio.wait_for(orchestrator.shutdown(), 2)

        assert fake_invoker.processes[0].terminated
        assert job.stage is JobStage.FAILED
        assert job.failure_reason == "Interrupted by shutdown"
        assert (results_dir / "exp1").is_dir()
        assert not (results_dir / "exp1" / "analysis.log").exists()
        assert len(orchestrator.registry) == 0


class TestResultsAfterRuns:

    @pytest.mark.asyncio
    async def test_cancelled_job_not_listed(self, orchestrator, fake_invoker, settings,
                                            results_dir, sample_fastq, make_tool_dir):
        """Test: one succeeded and one cancelled job leave exactly one result"""
        fake_invoker.script("cgeisolate", effects=make_tool_dir("done1"))
        fake_invoker.script("cgeisolate", hold=True)

        await orchestrator.start_job("done1", "bacterial", sample_fastq)
        await finish(orchestrator, "done1")

        await orchestrator.start_job("killed1", "bacterial", sample_fastq, qc_enabled=False)
        await fake_invoker.wait_for_calls(2)
        (results_dir / "killed1").mkdir()
        await orchestrator.cancel_job("killed1")
        await asyncio.wait_for(orchestrator.join(), 2)

        service = ResultsService(settings, orchestrator.registry, orchestrator.metadata)
        results = service.list_results()
        assert [r.name for r in results] == ["done1"]
        assert results[0].tool_type == "CGE Isolate"
        assert results[0].report_exists
