"""
Google Speech‑to‑Text service wrapper.

This module encapsulates interaction with the Google Cloud Speech API for a
single chunk of a meeting recording.  :class:`ChunkTranscriber` sends the
chunk's Cloud Storage URI with a fixed diarisation configuration, folds the
returned words into speaker segments and renders the chunk's transcript text.

A chunk that cannot be transcribed never fails the job: the error is logged
and an empty :class:`~meetscribe.models.ChunkResult` takes its place.

Usage::

    from meetscribe.stt_service import ChunkTranscriber

    transcriber = ChunkTranscriber.from_config(config)
    result = transcriber.transcribe(chunk)
    print(result.transcript_text)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
from typing import Any, Dict, Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict

from .config import PipelineConfig
from .models import ChunkDescriptor, ChunkFailure, ChunkOutcome, ChunkResult, settle
from .transcript_formatter import DiarizedSegmentBuilder, flatten_word_info, render_transcript

logger = logging.getLogger(__name__)

RECOGNITION_ERRORS = (
    GoogleAPIError,
    GoogleAuthError,
    concurrent.futures.TimeoutError,
    TimeoutError,
    ValueError,
    KeyError,
    TypeError,
)


def build_recognition_config(config: PipelineConfig) -> speech.RecognitionConfig:
    """Recognition settings shared by every chunk of every job."""
    diarisation_config = speech.SpeakerDiarizationConfig(
        enable_speaker_diarization=True,
        min_speaker_count=config.min_speaker_count,
        max_speaker_count=config.max_speaker_count,
    )
    return speech.RecognitionConfig(
        encoding=speech.RecognitionConfig.AudioEncoding[config.encoding],
        sample_rate_hertz=config.sample_rate_hertz,
        language_code=config.language_code,
        model=config.model,
        enable_automatic_punctuation=True,
        enable_word_time_offsets=True,
        audio_channel_count=config.audio_channel_count,
        diarization_config=diarisation_config,
    )


class ChunkTranscriber:
    def __init__(
        self,
        recognition_config: speech.RecognitionConfig,
        builder: DiarizedSegmentBuilder,
        *,
        client: Optional[Any] = None,
        operation_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.recognition_config = recognition_config
        self.builder = builder
        self.operation_timeout_seconds = operation_timeout_seconds
        self._client = client

    @classmethod
    def from_config(cls, config: PipelineConfig, *, client: Optional[Any] = None) -> "ChunkTranscriber":
        return cls(
            build_recognition_config(config),
            DiarizedSegmentBuilder(config.silence_threshold_seconds),
            client=client,
            operation_timeout_seconds=config.operation_timeout_seconds,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def recognize(self, gcs_uri: str) -> Dict[str, Any]:
        """Run a long-running recognition and return the response as a dict."""
        audio = speech.RecognitionAudio(uri=gcs_uri)
        logger.info("Starting STT job for %s", gcs_uri)
        operation = self.client.long_running_recognize(config=self.recognition_config, audio=audio)
        response = operation.result(timeout=self.operation_timeout_seconds)
        logger.info("STT job complete for %s", gcs_uri)
        return MessageToDict(response._pb)

    def try_transcribe(self, chunk: ChunkDescriptor, base_offset_seconds: float = 0.0) -> ChunkOutcome:
        try:
            response = self.recognize(chunk.locator)
            words = flatten_word_info(response)
        except RECOGNITION_ERRORS as exc:
            logger.warning(
                "Chunk %d (%s) failed to transcribe: %s", chunk.chunk_index, chunk.locator, exc
            )
            return ChunkFailure(chunk_index=chunk.chunk_index, reason=f"{type(exc).__name__}: {exc}")

        segments = self.builder.build(words, chunk.start_offset_seconds + base_offset_seconds)
        logger.info(
            "Chunk %d produced %d words in %d segments",
            chunk.chunk_index,
            len(words),
            len(segments),
        )
        return ChunkResult(
            chunk_index=chunk.chunk_index,
            transcript_text=render_transcript(segments),
            segments=segments,
        )

    def transcribe(self, chunk: ChunkDescriptor, base_offset_seconds: float = 0.0) -> ChunkResult:
        """Transcribe one chunk; failures yield the empty result for its index."""
        return settle(self.try_transcribe(chunk, base_offset_seconds))

    async def transcribe_async(
        self,
        chunk: ChunkDescriptor,
        base_offset_seconds: float = 0.0,
        *,
        executor: Optional[concurrent.futures.Executor] = None,
    ) -> ChunkResult:
        """Run :meth:`transcribe` on ``executor`` (the loop's default when ``None``)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            executor, functools.partial(self.transcribe, chunk, base_offset_seconds)
        )
