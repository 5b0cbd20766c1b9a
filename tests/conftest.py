"""
Pytest configuration for CGELabs tests
This file configures paths and fixtures for all tests
"""
import asyncio
import os
import stat
import sys
from pathlib import Path
from typing import Callable

import pytest

# Get the project root directory
PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"

# Add project directories to Python path
sys.path.insert(0, str(SRC_DIR))

os.environ["ENV"] = "testing"

from cgelabs.config import Settings, StorageSettings, ToolSettings  # noqa: E402
from cgelabs.jobs.models import (  # noqa: E402
    Channel,
    ProcessExit,
    ProcessOutput,
    ProcessSpawnError,
)


# Configure pytest
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (spawn real processes)")


def pytest_addoption(parser):
    """Add custom command line options"""
    parser.addoption(
        "--unit-only",
        action="store_true",
        default=False,
        help="Run only unit tests",
    )


def pytest_collection_modifyitems(config, items):
    """Add skip markers based on conditions"""
    skip_integration = None
    if config.getoption("--unit-only", default=False):
        skip_integration = pytest.mark.skip(reason="Skipping integration tests")
    elif sys.platform.startswith("win"):
        skip_integration = pytest.mark.skip(reason="Fake tools are POSIX shell scripts")

    if skip_integration is not None:
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def results_dir(tmp_path):
    """Empty results root"""
    path = tmp_path / "results"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path, results_dir):
    """Settings pointing at a temporary results root"""
    return Settings(
        env="testing",
        storage=StorageSettings(results_dir=results_dir),
        tools=ToolSettings(database_dir=tmp_path / "cge_db"),
    )


@pytest.fixture
def sample_fastq(tmp_path):
    """Small FASTQ input file"""
    path = tmp_path / "input" / "sample.fastq"
    path.parent.mkdir()
    path.write_text(
        "@SEQ1\nATCGATCGATCGATCG\n+\nIIIIIIIIIIIIIIII\n"
        "@SEQ2\nGCTAGCTAGCTAGCTA\n+\nHHHHHHHHHHHHHHHH\n"
    )
    return path


# ─────────────────────────────────────────────────────────────────────────────
# Scripted tool invocations
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedProcess:
    """In-memory stand-in for ProcessStream.

    Emits the given lines, runs ``effects`` (files the tool would write),
    then exits with ``exit_code``. With ``hold=True`` it stays alive until
    released or terminated; termination yields exit code -15.
    """

    def __init__(
        self,
        command: list[str],
        lines: list[tuple[Channel, str]] | None = None,
        exit_code: int = 0,
        spawn_error: str | None = None,
        hold: bool = False,
        effects: Callable[[], None] | None = None,
    ):
        self.command = command
        self.lines = lines or []
        self.exit_code = exit_code
        self.spawn_error = spawn_error
        self.hold = hold
        self.effects = effects
        self.terminated = False
        self.finished = spawn_error is not None
        self._release = asyncio.Event()

    @property
    def is_alive(self) -> bool:
        return not self.finished

    def terminate(self) -> bool:
        if not self.is_alive:
            return False
        self.terminated = True
        self._release.set()
        return True

    def release(self) -> None:
        self._release.set()

    async def events(self):
        if self.spawn_error is not None:
            yield ProcessSpawnError(self.spawn_error)
            return
        for channel, text in self.lines:
            await asyncio.sleep(0)
            yield ProcessOutput(channel=channel, text=text)
        if self.hold:
            await self._release.wait()
        if self.effects is not None and not self.terminated:
            self.effects()
        self.finished = True
        yield ProcessExit(exit_code=-15 if self.terminated else self.exit_code)


class FakeInvoker:
    """Records invocations and hands out scripted processes per executable."""

    def __init__(self):
        self.calls: list[tuple[str, list[str]]] = []
        self.processes: list[ScriptedProcess] = []
        self.overlapping_starts = 0
        self._scripts: dict[str, list[dict]] = {}

    def script(self, executable: str, **behaviour) -> None:
        self._scripts.setdefault(executable, []).append(behaviour)

    async def invoke(self, executable, args, env=None, cwd=None):
        self.calls.append((executable, list(args)))
        self.overlapping_starts += sum(1 for proc in self.processes if proc.is_alive)
        queue = self._scripts.get(executable) or []
        behaviour = queue.pop(0) if queue else {}
        process = ScriptedProcess([executable, *args], **behaviour)
        self.processes.append(process)
        return process

    async def wait_for_calls(self, count: int, timeout: float = 2.0) -> None:
        async def _poll():
            while len(self.calls) < count:
                await asyncio.sleep(0.001)
        await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def make_tool_dir(results_dir):
    """Effect factory: create the job's output directory with report files"""
    def _make(name: str, report: bool = True) -> Callable[[], None]:
        def effect():
            folder = results_dir / name
            folder.mkdir(parents=True, exist_ok=True)
            if report:
                (folder / "report.txt").write_text("report\n")
                (folder / f"{name}_report.pdf").write_bytes(b"%PDF-1.4\n")
        return effect
    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Real executables (POSIX shell scripts)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def write_tool(tmp_path):
    """Write an executable shell script standing in for an external tool"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _write(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write
