"""
Orchestration layer for the transcription pipeline.

A transcription job moves through ``PLANNING → DISPATCHING → MERGING →
DONE``:

* the recording is split into chunks by the splitting service;
* chunks are transcribed in concurrent batches;
* chunk results are merged into one transcript and the duration reconciled;
* the transcript is saved to the backend and the chunk objects are removed.

Only a planning failure aborts a job.  Once chunks are dispatched the job
always produces a transcript, possibly with gaps where chunks failed.  A
failed save raises :class:`~meetscribe.errors.PersistenceFailed`; the merged
transcript stays in the job store for ``job_retention_seconds`` and
:meth:`TranscriptionJob.retry_persistence` resends it without transcribing
again.  Any other error discards the job's arena before propagating.

Recognition calls run on a thread pool owned by the dispatch phase.  When the
dispatch timeout fires the pool is shut down without waiting, so the caller
gets its transcript while abandoned recognitions finish in the background.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

from . import storage
from .chunk_planner import ChunkPlanner
from .config import PipelineConfig
from .dispatcher import ConcurrentDispatcher
from .errors import PersistenceFailed, PlanningFailed
from .job_store import JobArena, JobState, JobStore
from .merger import TranscriptMerger
from .models import DeletionReport, JobResult, RecordingMethod
from .persistence import MeetingResultClient
from .stt_service import ChunkTranscriber

logger = logging.getLogger(__name__)

ChunkCleanup = Callable[[List[str]], DeletionReport]


class TranscriptionJob:
    def __init__(
        self,
        planner: ChunkPlanner,
        transcriber: ChunkTranscriber,
        result_client: MeetingResultClient,
        *,
        config: Optional[PipelineConfig] = None,
        merger: Optional[TranscriptMerger] = None,
        store: Optional[JobStore] = None,
        chunk_cleanup: Optional[ChunkCleanup] = None,
    ) -> None:
        self.planner = planner
        self.transcriber = transcriber
        self.result_client = result_client
        self.config = config if config is not None else PipelineConfig()
        self.merger = merger if merger is not None else TranscriptMerger()
        self.store = (
            store if store is not None else JobStore(retention_seconds=self.config.job_retention_seconds)
        )
        self.chunk_cleanup = chunk_cleanup

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "TranscriptionJob":
        return cls(
            ChunkPlanner(
                config.split_service_url,
                timeout_seconds=config.http_timeout_seconds,
                overlap_tolerance_seconds=config.chunk_overlap_tolerance_seconds,
            ),
            ChunkTranscriber.from_config(config),
            MeetingResultClient(config.backend_api_url, timeout_seconds=config.http_timeout_seconds),
            config=config,
            chunk_cleanup=storage.delete_objects if config.delete_chunks_after_job else None,
        )

    async def run(
        self,
        audio_locator: str,
        meeting_id: int,
        recording_duration_hint: float = 0.0,
        concurrency_limit: Optional[int] = None,
        *,
        recording_method: RecordingMethod = RecordingMethod.UPLOAD,
        recording_offset_seconds: float = 0.0,
        job_id: Optional[str] = None,
    ) -> JobResult:
        limit = concurrency_limit if concurrency_limit is not None else self.config.concurrency_limit
        if limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        job_id = job_id or uuid.uuid4().hex
        arena = self.store.open(
            job_id,
            meeting_id=meeting_id,
            audio_locator=audio_locator,
            recording_method=recording_method,
        )
        logger.info("Job %s started for meeting %s (%s)", job_id, meeting_id, audio_locator)

        try:
            return await self._execute(arena, recording_duration_hint, limit, recording_offset_seconds)
        except PersistenceFailed:
            raise
        except BaseException:
            logger.warning("Job %s discarded in state %s", job_id, arena.state.value)
            self.store.discard(job_id)
            raise

    async def _execute(
        self,
        arena: JobArena,
        recording_duration_hint: float,
        concurrency_limit: int,
        recording_offset_seconds: float,
    ) -> JobResult:
        try:
            arena.chunks = await asyncio.to_thread(
                self.planner.plan,
                arena.audio_locator,
                arena.meeting_id,
                self.config.chunk_duration_seconds,
            )
        except PlanningFailed:
            logger.error("Job %s aborted: chunk planning failed", arena.job_id, exc_info=True)
            arena.transition(JobState.ABORTED)
            raise

        arena.transition(JobState.DISPATCHING)
        executor = ThreadPoolExecutor(
            max_workers=concurrency_limit, thread_name_prefix=f"stt-{arena.job_id[:8]}"
        )
        transcribe = functools.partial(
            self.transcriber.transcribe_async,
            base_offset_seconds=recording_offset_seconds,
            executor=executor,
        )
        dispatcher = ConcurrentDispatcher(transcribe, concurrency_limit, slots=arena.results)
        try:
            await asyncio.wait_for(
                dispatcher.dispatch_all(arena.chunks),
                timeout=self.config.dispatch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Job %s: dispatch timed out after %ss; %d of %d chunks completed",
                arena.job_id,
                self.config.dispatch_timeout_seconds,
                len(arena.results),
                len(arena.chunks),
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        results = dispatcher.settled(arena.chunks)

        arena.transition(JobState.MERGING)
        arena.merged = self.merger.merge(results, arena.recording_method, recording_duration_hint)
        return await self._persist(arena)

    async def retry_persistence(self, job_id: str) -> JobResult:
        """Resend the merged transcript of a job whose save failed."""
        arena = self.store.get(job_id)
        if arena.merged is None:
            raise ValueError(f"Job {job_id} has no merged transcript to persist")
        return await self._persist(arena)

    async def _persist(self, arena: JobArena) -> JobResult:
        try:
            await asyncio.to_thread(
                self.result_client.save, arena.meeting_id, arena.merged, arena.audio_locator
            )
        except PersistenceFailed as exc:
            exc.job_id = arena.job_id
            self.store.retain(arena.job_id)
            raise
        arena.transition(JobState.DONE)
        result = JobResult.from_merged(arena.merged)
        await self._cleanup_chunks(arena)
        self.store.discard(arena.job_id)
        return result

    async def _cleanup_chunks(self, arena: JobArena) -> None:
        if self.chunk_cleanup is None or not arena.chunks:
            return
        uris = [c.locator for c in arena.chunks]
        try:
            report = await asyncio.to_thread(self.chunk_cleanup, uris)
        except (GoogleAPIError, GoogleAuthError) as exc:
            logger.warning("Job %s: chunk cleanup failed: %s", arena.job_id, exc)
            return
        logger.info(
            "Job %s: deleted %d chunk objects (%d failed)",
            arena.job_id,
            report.deleted_count,
            report.failed_count,
        )


async def run_transcription_job(
    audio_locator: str,
    meeting_id: int,
    recording_duration_hint: float = 0.0,
    concurrency_limit: Optional[int] = None,
    *,
    recording_method: RecordingMethod = RecordingMethod.UPLOAD,
    recording_offset_seconds: float = 0.0,
    config: Optional[PipelineConfig] = None,
) -> JobResult:
    """Transcribe a stored recording and save the result for ``meeting_id``.

    Raises:
        PlanningFailed: The recording could not be split into chunks.
        PersistenceFailed: The transcript was built but could not be saved.
    """
    job = TranscriptionJob.from_config(config or PipelineConfig())
    return await job.run(
        audio_locator,
        meeting_id,
        recording_duration_hint,
        concurrency_limit,
        recording_method=recording_method,
        recording_offset_seconds=recording_offset_seconds,
    )
