"""
Splitting service.

Downloads a stored recording, cuts it into chunks of ``chunk_duration``
seconds and uploads each chunk next to the recording under
``chunks/meeting_{id}/``.  The response is the chunk list consumed by
:class:`~meetscribe.chunk_planner.ChunkPlanner`.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, List, Optional

from . import audio_processor, storage
from .models import ChunkDescriptor, SplitResponse

logger = logging.getLogger(__name__)

CHUNKS_PREFIX = "chunks/"


def _chunk_folder(meeting_id: Optional[int]) -> str:
    if meeting_id is None:
        return f"{CHUNKS_PREFIX}job_{uuid.uuid4().hex}/"
    return f"{CHUNKS_PREFIX}meeting_{meeting_id}/"


def split_recording(
    gcs_uri: str,
    chunk_duration_seconds: float,
    meeting_id: Optional[int] = None,
    *,
    client: Optional[Any] = None,
) -> SplitResponse:
    """Split the recording at ``gcs_uri`` into uploaded chunks."""
    bucket_name, _ = storage.parse_gcs_uri(gcs_uri)
    folder = _chunk_folder(meeting_id)
    logger.info("Splitting %s into %ss chunks", gcs_uri, chunk_duration_seconds)

    local_path = storage.download_to_temp(gcs_uri, client=client)
    try:
        audio = audio_processor.load_audio(local_path)
        total_seconds = len(audio) / 1000.0
        chunks: List[ChunkDescriptor] = []
        for index, (start, duration) in enumerate(
            audio_processor.chunk_bounds(total_seconds, chunk_duration_seconds)
        ):
            chunk_path = audio_processor.export_chunk(audio, start, duration)
            try:
                dest_name = f"{folder}chunk_{index:03d}.{audio_processor.CHUNK_FORMAT}"
                chunk_uri = storage.upload_file(
                    chunk_path,
                    bucket_name,
                    dest_name,
                    content_type="audio/webm",
                    client=client,
                )
            finally:
                audio_processor.cleanup_temp_file(chunk_path)
            chunks.append(
                ChunkDescriptor(
                    chunk_index=index,
                    locator=chunk_uri,
                    start_offset_seconds=start,
                    duration_seconds=duration,
                )
            )
    finally:
        audio_processor.cleanup_temp_file(local_path)

    logger.info("Split %s into %d chunks (%.1fs)", gcs_uri, len(chunks), total_seconds)
    return SplitResponse(chunks=chunks, total_duration=total_seconds)
