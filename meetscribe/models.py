"""
Typed records exchanged between pipeline stages and external services.

Every payload that crosses a service boundary (splitting function, backend
API, Speech-to-Text response words) is validated through one of these
pydantic models instead of reading raw dictionaries.  The wire names used by
the services (``chunkIndex``, ``gcsUri``, ``speakerIndex`` …) are accepted on
input and produced on output; Python code uses the snake_case attributes.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RecordingMethod(str, Enum):
    """How the meeting audio was captured.

    ``RECORD`` recordings are captured live in the browser and carry no
    reliable length, so their duration comes from the transcript.  ``UPLOAD``
    recordings come with a measured audio length.
    """

    RECORD = "RECORD"
    UPLOAD = "UPLOAD"


class AudioObjectRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    locator: str = Field(min_length=1)
    content_type: str = "audio/webm"
    byte_size: Optional[int] = Field(default=None, ge=0)


class ChunkDescriptor(BaseModel):
    """One slice of a recording as produced by the splitting service."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(
        ge=0,
        validation_alias=AliasChoices("chunk_index", "chunkIndex"),
        serialization_alias="chunkIndex",
    )
    locator: str = Field(
        min_length=1,
        validation_alias=AliasChoices("locator", "gcsUri"),
        serialization_alias="gcsUri",
    )
    start_offset_seconds: float = Field(
        ge=0,
        validation_alias=AliasChoices("start_offset_seconds", "startTime"),
        serialization_alias="startTime",
    )
    duration_seconds: float = Field(
        gt=0,
        validation_alias=AliasChoices("duration_seconds", "duration"),
        serialization_alias="duration",
    )

    @property
    def end_offset_seconds(self) -> float:
        return self.start_offset_seconds + self.duration_seconds


class SplitRequest(BaseModel):
    gcs_uri: str = Field(min_length=1, serialization_alias="gcsUri")
    chunk_duration: float = Field(gt=0, serialization_alias="chunkDuration")
    meeting_id: Optional[int] = Field(default=None, serialization_alias="meetingId")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SplitResponse(BaseModel):
    chunks: List[ChunkDescriptor]
    total_duration: Optional[float] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("total_duration", "totalDuration"),
        serialization_alias="totalDuration",
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class WordToken(BaseModel):
    """A recognised word in chunk-relative time."""

    model_config = ConfigDict(frozen=True)

    text: str
    speaker_tag: int = 0
    start_time_seconds: float = Field(default=0.0, ge=0)
    end_time_seconds: float = Field(default=0.0, ge=0)


class Segment(BaseModel):
    """A run of speech by one speaker, in recording-absolute time."""

    model_config = ConfigDict(frozen=True)

    speaker_tag: int
    text: str
    start_time_seconds: float
    end_time_seconds: float


class ChunkResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    transcript_text: str = ""
    segments: List[Segment] = Field(default_factory=list)

    @classmethod
    def empty(cls, chunk_index: int) -> "ChunkResult":
        """The placeholder used for a chunk whose transcription failed."""
        return cls(chunk_index=chunk_index)

    @property
    def is_empty(self) -> bool:
        return not self.transcript_text and not self.segments


class ChunkFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    reason: str


ChunkOutcome = Union[ChunkResult, ChunkFailure]


def settle(outcome: ChunkOutcome) -> ChunkResult:
    """Map a chunk outcome to a ``ChunkResult``; failures become empty results."""
    if isinstance(outcome, ChunkFailure):
        return ChunkResult.empty(outcome.chunk_index)
    return outcome


class SpeechLog(BaseModel):
    """One speech-log row as stored by the backend (whole seconds)."""

    model_config = ConfigDict(populate_by_name=True)

    speaker_index: int = Field(alias="speakerIndex")
    text: str
    start_time: int = Field(alias="startTime")
    end_time: int = Field(alias="endTime")

    @classmethod
    def from_segment(cls, segment: Segment) -> "SpeechLog":
        return cls(
            speaker_index=segment.speaker_tag,
            text=segment.text,
            start_time=math.floor(segment.start_time_seconds),
            end_time=math.floor(segment.end_time_seconds),
        )


class MergedTranscript(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_text: str
    speech_logs: List[Segment] = Field(default_factory=list)
    duration_seconds: int = Field(default=0, ge=0)

    def to_speech_logs(self) -> List[SpeechLog]:
        return [SpeechLog.from_segment(s) for s in self.speech_logs]

    def to_payload(self, audio_locator: str) -> Dict[str, Any]:
        """Body of the backend's ``stt-result`` endpoint."""
        return {
            "duration": self.duration_seconds,
            "transcript": self.full_text,
            "audio_id": audio_locator,
            "speechLogs": [log.model_dump(by_alias=True) for log in self.to_speech_logs()],
        }


class JobResult(BaseModel):
    transcript: str
    speech_logs: List[SpeechLog]
    duration: int

    @classmethod
    def from_merged(cls, merged: MergedTranscript) -> "JobResult":
        return cls(
            transcript=merged.full_text,
            speech_logs=merged.to_speech_logs(),
            duration=merged.duration_seconds,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "transcript": self.transcript,
            "speechLogs": [log.model_dump(by_alias=True) for log in self.speech_logs],
            "duration": self.duration,
        }


DeletionStatus = Literal["deleted", "already_deleted", "skipped", "failed"]


class DeletionOutcome(BaseModel):
    uri: str
    status: DeletionStatus
    reason: Optional[str] = None


class DeletionReport(BaseModel):
    results: List[DeletionOutcome] = Field(default_factory=list)

    def count(self, *statuses: str) -> int:
        return sum(1 for r in self.results if r.status in statuses)

    @property
    def deleted_count(self) -> int:
        return self.count("deleted", "already_deleted")

    @property
    def failed_count(self) -> int:
        return self.count("failed")

    @property
    def skipped_count(self) -> int:
        return self.count("skipped")

    def to_payload(self) -> Dict[str, Any]:
        total = len(self.results)
        return {
            "success": self.failed_count == 0,
            "message": (
                f"Deletion completed. Total: {total}, Deleted: {self.deleted_count}, "
                f"Failed: {self.failed_count}, Skipped: {self.skipped_count}"
            ),
            "deletedCount": self.deleted_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
            "totalCount": total,
            "results": [r.model_dump(exclude_none=True) for r in self.results],
        }
