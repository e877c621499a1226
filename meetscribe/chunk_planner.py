"""
Chunk planning through the splitting service.

The planner asks the splitting function to cut a stored recording into
chunks of a target duration and validates the chunk list it returns.  It does
not retry: without a chunk plan there is nothing to transcribe, so any failure
here aborts the job.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests
from pydantic import ValidationError

from .errors import MalformedSplitResponseError, SplitServiceError
from .models import ChunkDescriptor, SplitRequest, SplitResponse

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_DURATION_SECONDS = 300.0


def validate_plan(
    response: SplitResponse, *, overlap_tolerance_seconds: float = 1.0
) -> List[ChunkDescriptor]:
    """Check the chunk list forms one contiguous timeline and return it sorted.

    Raises:
        MalformedSplitResponseError: If the list is empty, the indexes are not
            ``0..n-1``, consecutive chunks overlap by more than the tolerance, or
            the chunks stop short of the reported total duration.
    """
    chunks = sorted(response.chunks, key=lambda c: c.chunk_index)
    if not chunks:
        raise MalformedSplitResponseError("Splitting service returned no chunks")

    indexes = [c.chunk_index for c in chunks]
    if indexes != list(range(len(chunks))):
        raise MalformedSplitResponseError(f"Chunk indexes are not contiguous from 0: {indexes}")

    for previous, current in zip(chunks, chunks[1:]):
        overlap = previous.end_offset_seconds - current.start_offset_seconds
        if overlap > overlap_tolerance_seconds:
            raise MalformedSplitResponseError(
                f"Chunks {previous.chunk_index} and {current.chunk_index} overlap by {overlap:.3f}s"
            )

    if response.total_duration:
        shortfall = response.total_duration - chunks[-1].end_offset_seconds
        if shortfall > overlap_tolerance_seconds:
            raise MalformedSplitResponseError(
                f"Chunks end at {chunks[-1].end_offset_seconds:.3f}s but the recording "
                f"is {response.total_duration:.3f}s long"
            )
    return chunks


class ChunkPlanner:
    def __init__(
        self,
        split_service_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 60.0,
        overlap_tolerance_seconds: float = 1.0,
    ) -> None:
        self.split_service_url = split_service_url
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.overlap_tolerance_seconds = overlap_tolerance_seconds

    def plan(
        self,
        audio_locator: str,
        meeting_id: Optional[int],
        target_chunk_duration_seconds: float = DEFAULT_CHUNK_DURATION_SECONDS,
    ) -> List[ChunkDescriptor]:
        if target_chunk_duration_seconds <= 0:
            raise ValueError("target_chunk_duration_seconds must be positive")
        if not self.split_service_url:
            raise SplitServiceError("SPLIT_SERVICE_URL is not configured")

        request = SplitRequest(
            gcs_uri=audio_locator,
            chunk_duration=target_chunk_duration_seconds,
            meeting_id=meeting_id,
        )
        logger.info("Calling splitting service for %s", audio_locator)
        try:
            response = self.session.post(
                self.split_service_url,
                json=request.to_payload(),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise SplitServiceError(f"Splitting service request failed: {exc}") from exc

        if not response.ok:
            logger.error("Splitting service error %s: %s", response.status_code, response.text)
            raise SplitServiceError(
                f"Splitting service failed: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedSplitResponseError("Splitting service returned invalid JSON") from exc
        if not isinstance(body, dict) or not isinstance(body.get("chunks"), list):
            raise MalformedSplitResponseError(
                'Splitting service returned invalid structure (missing "chunks" array)'
            )
        try:
            parsed = SplitResponse.model_validate(body)
        except ValidationError as exc:
            raise MalformedSplitResponseError(f"Invalid chunk descriptor: {exc}") from exc

        chunks = validate_plan(parsed, overlap_tolerance_seconds=self.overlap_tolerance_seconds)
        logger.info("Split completed: %d chunks", len(chunks))
        return chunks
