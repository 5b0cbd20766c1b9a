"""
Launch external tools and stream their output.

Children are started with ``asyncio.create_subprocess_exec`` (no shell).
Output is read line by line from both pipes as it arrives and surfaced as
``ProcessOutput`` events; a single terminal event, ``ProcessExit`` or
``ProcessSpawnError``, always comes last.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator, Mapping, Sequence

from cgelabs.config import ToolSettings
from cgelabs.core.logging import get_logger

from .models import (
    Channel,
    ProcessEvent,
    ProcessExit,
    ProcessOutput,
    ProcessSpawnError,
)

logger = get_logger(__name__)

_PUMP_DONE = object()


async def _skip_line(reader: asyncio.StreamReader) -> None:
    """Consume the rest of the current line, newline included, or up to EOF."""
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as exc:
            await reader.readexactly(exc.consumed)
        except asyncio.IncompleteReadError:
            return


class ProcessStream:
    """Live handle on one tool invocation."""

    def __init__(
        self,
        command: list[str],
        process: asyncio.subprocess.Process | None = None,
        spawn_error: str | None = None,
        noise_prefix: str | None = None,
    ):
        self.command = command
        self.process = process
        self.spawn_error = spawn_error
        self.noise_prefix = noise_prefix or None
        self._consumed = False

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process is not None else None

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def terminate(self) -> bool:
        """Send a single SIGTERM. No-op once the child has exited."""
        if not self.is_alive:
            return False
        try:
            self.process.terminate()
        except ProcessLookupError:
            return False
        return True

    def _is_noise(self, text: str) -> bool:
        return self.noise_prefix is not None and text.startswith(self.noise_prefix)

    async def _pump(
        self,
        reader: asyncio.StreamReader,
        channel: Channel,
        queue: asyncio.Queue,
    ) -> None:
        try:
            while True:
                eof = False
                try:
                    raw = await reader.readuntil(b"\n")
                except asyncio.IncompleteReadError as exc:
                    # Final line without a trailing newline
                    raw, eof = exc.partial, True
                except asyncio.LimitOverrunError:
                    await _skip_line(reader)
                    logger.warning("Skipped output line longer than the stream limit",
                                   channel=channel.value)
                    continue
                if raw:
                    text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                    if not self._is_noise(text):
                        await queue.put(ProcessOutput(channel=channel, text=text))
                if eof:
                    break
        finally:
            await queue.put(_PUMP_DONE)

    async def events(self) -> AsyncIterator[ProcessEvent]:
        """
        Yield output events as they arrive, then the terminal event.

        Each channel keeps its own order; stdout and stderr are not
        interleaved in true emission order. May be consumed once.
        """
        if self._consumed:
            raise RuntimeError("process events already consumed")
        self._consumed = True

        if self.process is None:
            yield ProcessSpawnError(self.spawn_error or "process was not started")
            return

        queue: asyncio.Queue = asyncio.Queue()
        pumps = [
            asyncio.create_task(self._pump(self.process.stdout, Channel.STDOUT, queue)),
            asyncio.create_task(self._pump(self.process.stderr, Channel.STDERR, queue)),
        ]
        try:
            remaining = len(pumps)
            while remaining:
                item = await queue.get()
                if item is _PUMP_DONE:
                    remaining -= 1
                    continue
                yield item
            exit_code = await self.process.wait()
            yield ProcessExit(exit_code=exit_code)
        finally:
            for pump in pumps:
                if not pump.done():
                    pump.cancel()

    def __repr__(self) -> str:
        return f"<ProcessStream {self.command[0]!r} pid={self.pid} rc={self.returncode}>"


class ToolInvoker:
    """Builds the final command line and spawns tools."""

    def __init__(
        self,
        conda_executable: str | Path | None = None,
        conda_env: str | None = None,
        noise_prefix: str | None = "function",
        stream_limit: int = 1024 * 1024,
    ):
        self.conda_executable = str(conda_executable) if conda_executable else None
        self.conda_env = conda_env
        self.noise_prefix = noise_prefix
        self.stream_limit = stream_limit

    @classmethod
    def from_settings(cls, tools: ToolSettings) -> ToolInvoker:
        return cls(
            conda_executable=tools.conda_executable,
            conda_env=tools.conda_env,
            noise_prefix=tools.noise_prefix,
            stream_limit=tools.stream_limit,
        )

    def build_command(self, executable: str, args: Sequence[str]) -> list[str]:
        if self.conda_executable:
            return [
                self.conda_executable,
                "run",
                "-n",
                self.conda_env or "base",
                "--no-capture-output",
                executable,
                *args,
            ]
        return [executable, *args]

    async def invoke(
        self,
        executable: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ProcessStream:
        """
        Start a tool.

        A missing or non-executable binary does not raise: the returned
        stream carries the spawn error as its only event.

        Args:
            executable: Tool name (resolved on PATH) or path
            args: Argument vector, passed verbatim
            env: Extra environment variables layered over the current one
            cwd: Working directory for the child
        """
        command = self.build_command(executable, args)
        process_env = None
        if env:
            process_env = os.environ.copy()
            process_env.update(env)

        logger.info("Running", command=" ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                env=process_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.stream_limit,
            )
        except OSError as exc:
            reason = exc.strerror or str(exc)
            logger.error("Failed to start tool", executable=command[0], error=reason)
            return ProcessStream(command, spawn_error=f"{command[0]}: {reason}")

        logger.debug("Tool started", executable=command[0], pid=process.pid)
        return ProcessStream(command, process=process, noise_prefix=self.noise_prefix)
