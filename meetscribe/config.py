"""
Runtime configuration for the transcription pipeline.

All settings are read from environment variables so the same code can run as
a Flask service, a background function or inside tests.  The defaults mirror
what the production deployment uses:

* ``CHUNK_DURATION_SECONDS`` – length of each chunk requested from the
  splitting service (default 300).
* ``SILENCE_THRESHOLD_SECONDS`` – a pause of at least this long starts a new
  speaker segment (default 5).
* ``CONCURRENCY_LIMIT`` – number of chunks transcribed in parallel.
* ``SPLIT_SERVICE_URL`` – endpoint of the splitting function.
* ``BACKEND_API_URL`` – base URL of the backend that stores STT results.
* ``JOB_RETENTION_SECONDS`` – how long a transcript whose save failed is kept
  for a retry.

Variables that are set but empty fall back to the default.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseSettings):
    model_config = SettingsConfigDict(
        frozen=True,
        populate_by_name=True,
        env_ignore_empty=True,
    )

    split_service_url: str = Field(default="", validation_alias="SPLIT_SERVICE_URL")
    backend_api_url: str = Field(default="http://localhost:8080", validation_alias="BACKEND_API_URL")
    bucket_name: str = Field(default="", validation_alias="GOOGLE_CLOUD_STORAGE_BUCKET")

    chunk_duration_seconds: float = Field(default=300.0, gt=0, validation_alias="CHUNK_DURATION_SECONDS")
    silence_threshold_seconds: float = Field(default=5.0, gt=0, validation_alias="SILENCE_THRESHOLD_SECONDS")
    concurrency_limit: int = Field(default=5, ge=1, validation_alias="CONCURRENCY_LIMIT")
    chunk_overlap_tolerance_seconds: float = Field(
        default=1.0, ge=0, validation_alias="CHUNK_OVERLAP_TOLERANCE_SECONDS"
    )

    language_code: str = Field(default="ko-KR", validation_alias="STT_LANGUAGE_CODE")
    model: str = Field(default="latest_long", validation_alias="STT_MODEL")
    encoding: str = Field(default="WEBM_OPUS", validation_alias="STT_ENCODING")
    sample_rate_hertz: int = Field(default=48000, ge=1, validation_alias="STT_SAMPLE_RATE_HERTZ")
    audio_channel_count: int = Field(default=2, ge=1, validation_alias="STT_AUDIO_CHANNEL_COUNT")
    min_speaker_count: int = Field(default=1, ge=1, validation_alias="STT_MIN_SPEAKERS")
    max_speaker_count: int = Field(default=5, ge=1, validation_alias="STT_MAX_SPEAKERS")
    operation_timeout_seconds: Optional[float] = Field(
        default=600.0, gt=0, validation_alias="STT_OPERATION_TIMEOUT_SECONDS"
    )

    dispatch_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, validation_alias="DISPATCH_TIMEOUT_SECONDS"
    )
    http_timeout_seconds: float = Field(default=60.0, gt=0, validation_alias="HTTP_TIMEOUT_SECONDS")
    delete_chunks_after_job: bool = Field(default=True, validation_alias="DELETE_CHUNKS_AFTER_JOB")
    job_retention_seconds: float = Field(default=3600.0, gt=0, validation_alias="JOB_RETENTION_SECONDS")

    @field_validator("backend_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
