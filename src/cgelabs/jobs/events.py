"""Per-job event stream.

The orchestrator publishes, any number of consumers subscribe. Each
subscriber first receives the history recorded so far and then live events,
up to and including the terminal ``JobFinished`` event.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobOutput:
    """A console line: tool output or an orchestrator notice."""
    level: str
    text: str
    stage: str
    timestamp: datetime = field(default_factory=_now)

    type = "output"


@dataclass(frozen=True)
class JobStageChanged:
    stage: str
    timestamp: datetime = field(default_factory=_now)

    type = "stage"


@dataclass(frozen=True)
class JobFinished:
    """Terminal event. Always the last event of a stream."""
    stage: str
    message: str | None = None
    timestamp: datetime = field(default_factory=_now)

    type = "finished"

    @property
    def succeeded(self) -> bool:
        return self.stage == "succeeded"


JobEvent = JobOutput | JobStageChanged | JobFinished


def event_to_dict(event: JobEvent) -> dict[str, Any]:
    data = asdict(event)
    data["type"] = event.type
    data["timestamp"] = event.timestamp.isoformat()
    return data


class JobEventStream:
    """Ordered, replayable event channel for one job."""

    def __init__(self) -> None:
        self._history: list[JobEvent] = []
        self._subscribers: list[asyncio.Queue[JobEvent]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> list[JobEvent]:
        return list(self._history)

    def publish(self, event: JobEvent) -> None:
        if self._closed:
            return
        self._history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)
        if isinstance(event, JobFinished):
            self._closed = True
            self._subscribers.clear()

    async def subscribe(self) -> AsyncIterator[JobEvent]:
        """Yield past events, then live ones until the job finishes."""
        # History copy and queue registration happen without a suspension
        # point in between, so no event can fall into the gap.
        backlog = list(self._history)
        queue: asyncio.Queue[JobEvent] | None = None
        if not self._closed:
            queue = asyncio.Queue()
            self._subscribers.append(queue)
        try:
            for event in backlog:
                yield event
            if queue is None:
                return
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, JobFinished):
                    return
        finally:
            if queue is not None and queue in self._subscribers:
                self._subscribers.remove(queue)

    async def wait_finished(self) -> JobFinished:
        async for event in self.subscribe():
            if isinstance(event, JobFinished):
                return event
        raise RuntimeError("event stream ended without a terminal event")
