# job_queue.py
import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Deque, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DURATIONS = (5, 10)


def discard_frames(frames: Iterable[Path]) -> None:
    """Delete downloaded frame files; a file that is already gone is fine."""
    for frame in frames:
        try:
            Path(frame).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove frame %s", frame, exc_info=True)


class Engine(str, Enum):
    GEN3_TURBO = "gen3_turbo"
    GEN3 = "gen3"

    @property
    def label(self) -> str:
        """Name shown in the Runway model picker."""
        return {
            Engine.GEN3_TURBO: "Gen-3 Alpha Turbo",
            Engine.GEN3: "Gen-3 Alpha",
        }[self]


@dataclass(frozen=True)
class Job:
    frames: Tuple[Path, ...]
    engine: Engine
    prompt: str
    duration: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        if not 1 <= len(self.frames) <= 2:
            raise ValueError("a job takes a first frame and an optional last frame")
        if self.duration is not None and self.duration not in DURATIONS:
            raise ValueError(f"duration must be one of {DURATIONS}, got {self.duration}")
        if not self.prompt.strip():
            raise ValueError("prompt must not be empty")

    @property
    def first_frame(self) -> Path:
        return self.frames[0]

    @property
    def last_frame(self) -> Optional[Path]:
        return self.frames[1] if len(self.frames) > 1 else None


class JobQueue:
    """
    FIFO of pending jobs with a single consumer.

    The head stays in the queue while it executes and is only removed by
    complete() once it reached a terminal state, so len(queue) == 0 means
    nothing is pending and nothing is running.
    """

    def __init__(self):
        self._jobs: Deque[Job] = deque()
        self._in_flight: Optional[Job] = None
        self._has_work = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._jobs)

    def is_empty(self) -> bool:
        return not self._jobs

    def is_idle(self) -> bool:
        # a reset can empty the queue while its former head is still running
        return not self._jobs and self._in_flight is None

    @property
    def in_flight(self) -> Optional[Job]:
        return self._in_flight

    def submit(self, job: Job) -> int:
        """Append at the tail and return the job's position (0 = head)."""
        was_empty = not self._jobs
        self._jobs.append(job)
        self._idle.clear()
        if was_empty:
            self._has_work.set()
        logger.info("Job %s queued at position %d", job.id, len(self._jobs) - 1)
        return len(self._jobs) - 1

    def peek(self) -> Optional[Job]:
        return self._jobs[0] if self._jobs else None

    async def next(self) -> Job:
        """Wait for a head that is not already running and claim it."""
        while True:
            head = self.peek()
            if head is not None and self._in_flight is None:
                self._in_flight = head
                return head
            self._has_work.clear()
            await self._has_work.wait()

    def complete(self, job_id: str) -> bool:
        """Remove the head if it is job_id; always releases the in-flight slot for job_id."""
        if self._in_flight is not None and self._in_flight.id == job_id:
            self._in_flight = None
        head = self.peek()
        if head is None or head.id != job_id:
            logger.warning("Job %s completed but is not the queue head; nothing removed", job_id)
            self._signal()
            return False
        self._jobs.popleft()
        self._signal()
        return True

    def reset(self) -> List[Job]:
        """Drop everything; returns the pending jobs that will never run."""
        dropped = [job for job in self._jobs if job is not self._in_flight]
        self._jobs.clear()
        self._signal()
        logger.info("Queue reset, %d pending job(s) dropped", len(dropped))
        return dropped

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def _signal(self) -> None:
        if self._jobs:
            self._has_work.set()
        elif self._in_flight is None:
            self._idle.set()
