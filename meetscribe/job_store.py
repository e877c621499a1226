"""
Job-scoped storage for in-flight transcription jobs.

Each job gets an arena keyed by its id that holds the chunk plan, the
per-chunk result slots and, once merged, the transcript awaiting persistence.
The arena is torn down when the transcript has been persisted or the job
failed before merging.  An arena whose save failed is retained so the save
can be retried, but only for ``retention_seconds``; expired arenas are evicted
whenever a new job opens.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .models import ChunkDescriptor, ChunkResult, MergedTranscript, RecordingMethod

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600.0


class JobState(str, Enum):
    PLANNING = "PLANNING"
    DISPATCHING = "DISPATCHING"
    MERGING = "MERGING"
    DONE = "DONE"
    ABORTED = "ABORTED"


@dataclass
class JobArena:
    job_id: str
    meeting_id: int
    audio_locator: str
    recording_method: RecordingMethod = RecordingMethod.UPLOAD
    state: JobState = JobState.PLANNING
    chunks: List[ChunkDescriptor] = field(default_factory=list)
    results: Dict[int, ChunkResult] = field(default_factory=dict)
    merged: Optional[MergedTranscript] = None
    retained_at: Optional[float] = None

    def transition(self, state: JobState) -> None:
        logger.info("Job %s: %s -> %s", self.job_id, self.state.value, state.value)
        self.state = state


class JobStore:
    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._arenas: Dict[str, JobArena] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._arenas

    def __len__(self) -> int:
        return len(self._arenas)

    def open(self, job_id: str, **kwargs) -> JobArena:
        self.evict_expired()
        if job_id in self._arenas:
            raise KeyError(f"Job {job_id} already exists")
        arena = JobArena(job_id=job_id, **kwargs)
        self._arenas[job_id] = arena
        return arena

    def get(self, job_id: str) -> JobArena:
        self.evict_expired()
        try:
            return self._arenas[job_id]
        except KeyError:
            raise KeyError(f"Unknown job {job_id}") from None

    def retain(self, job_id: str) -> None:
        """Keep a job's arena for a later retry, starting its retention window."""
        self._arenas[job_id].retained_at = self._clock()

    def discard(self, job_id: str) -> None:
        self._arenas.pop(job_id, None)

    def evict_expired(self) -> None:
        now = self._clock()
        expired = [
            job_id
            for job_id, arena in self._arenas.items()
            if arena.retained_at is not None and now - arena.retained_at >= self.retention_seconds
        ]
        for job_id in expired:
            logger.warning("Job %s: retained transcript expired without a successful save", job_id)
            del self._arenas[job_id]
