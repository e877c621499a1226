"""Exceptions raised by the transcription pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .models import MergedTranscript


class TranscriptionPipelineError(Exception):
    """Base class for errors that fail a whole transcription job."""


class PlanningFailed(TranscriptionPipelineError):
    """The recording could not be split into chunks; the job is aborted."""


class SplitServiceError(PlanningFailed):
    """The splitting service was unreachable or answered with an error status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedSplitResponseError(PlanningFailed):
    """The splitting service answered, but the chunk list is unusable."""


class PersistenceFailed(TranscriptionPipelineError):
    """The backend refused or never received the merged transcript.

    The merged transcript is kept on the exception so the caller can retry the
    save without transcribing the recording again.
    """

    def __init__(
        self,
        message: str,
        *,
        meeting_id: int,
        status_code: Optional[int] = None,
        merged: Optional["MergedTranscript"] = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.meeting_id = meeting_id
        self.status_code = status_code
        self.merged = merged
        self.job_id = job_id


class InvalidGcsUriError(ValueError):
    """A storage locator is not of the form ``gs://bucket/path``."""
