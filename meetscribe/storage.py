"""
Cloud Storage helpers.

Recordings and their chunks live in a Cloud Storage bucket and are passed
around as ``gs://bucket/path`` URIs.  This module parses those URIs and wraps
the handful of bucket operations the pipeline needs: describing, downloading
and uploading objects, storing a new meeting recording and deleting chunk
objects once a job is finished.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage

from .errors import InvalidGcsUriError
from .models import AudioObjectRef, DeletionOutcome, DeletionReport

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs://"
RECORDINGS_PREFIX = "audios/"
RECORDING_CONTENT_TYPE = "audio/webm"


def parse_gcs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/path/to/blob`` into ``(bucket, path/to/blob)``."""
    if not uri or not uri.startswith(GCS_SCHEME):
        raise InvalidGcsUriError(f"Invalid URI format: {uri}")
    bucket, _, path = uri[len(GCS_SCHEME):].partition("/")
    if not bucket or not path:
        raise InvalidGcsUriError(f"No file path in URI: {uri}")
    return bucket, path


def to_gcs_uri(bucket_name: str, blob_name: str) -> str:
    return f"{GCS_SCHEME}{bucket_name}/{blob_name}"


def _client(client: Optional[Any]) -> Any:
    return client if client is not None else storage.Client()


def describe_object(uri: str, *, client: Optional[Any] = None) -> AudioObjectRef:
    bucket_name, path = parse_gcs_uri(uri)
    blob = _client(client).bucket(bucket_name).blob(path)
    blob.reload()
    return AudioObjectRef(
        locator=uri,
        content_type=blob.content_type or RECORDING_CONTENT_TYPE,
        byte_size=blob.size,
    )


def download_to_temp(uri: str, *, client: Optional[Any] = None) -> str:
    """Download a blob to a temporary file and return the local path."""
    bucket_name, path = parse_gcs_uri(uri)
    blob = _client(client).bucket(bucket_name).blob(path)
    fd, tmp_path = tempfile.mkstemp(suffix=Path(path).suffix)
    os.close(fd)
    blob.download_to_filename(tmp_path)
    return tmp_path


def upload_file(
    local_path: str,
    bucket_name: str,
    dest_name: str,
    *,
    content_type: Optional[str] = None,
    client: Optional[Any] = None,
) -> str:
    """Upload a local file under ``dest_name`` and return its ``gs://`` URI."""
    blob = _client(client).bucket(bucket_name).blob(dest_name)
    blob.upload_from_filename(local_path, content_type=content_type)
    return to_gcs_uri(bucket_name, dest_name)


def upload_recording(
    data: bytes,
    meeting_id: int,
    bucket_name: str,
    *,
    content_type: str = RECORDING_CONTENT_TYPE,
    client: Optional[Any] = None,
) -> AudioObjectRef:
    """Store a meeting recording as ``audios/meeting_{id}_{millis}.webm``."""
    if not bucket_name:
        raise ValueError("GCS bucket name is missing")
    file_name = f"meeting_{meeting_id}_{int(time.time() * 1000)}.webm"
    blob_name = f"{RECORDINGS_PREFIX}{file_name}"
    blob = _client(client).bucket(bucket_name).blob(blob_name)
    blob.metadata = {"meetingId": str(meeting_id)}
    blob.upload_from_string(data, content_type=content_type)
    uri = to_gcs_uri(bucket_name, blob_name)
    logger.info("Audio file uploaded to %s", uri)
    return AudioObjectRef(locator=uri, content_type=content_type, byte_size=len(data))


def delete_objects(uris: Iterable[str], *, client: Optional[Any] = None) -> DeletionReport:
    """Delete chunk objects, reporting the outcome of each URI.

    Invalid URIs are skipped, missing objects count as already deleted and
    any other storage error is recorded as a failure; nothing is raised.
    """
    uris = list(uris)
    report = DeletionReport()
    if not uris:
        return report
    gcs = _client(client)
    for uri in uris:
        try:
            bucket_name, path = parse_gcs_uri(uri)
        except InvalidGcsUriError as exc:
            logger.warning("Skipping %s: %s", uri, exc)
            report.results.append(DeletionOutcome(uri=uri, status="skipped", reason=str(exc)))
            continue
        try:
            gcs.bucket(bucket_name).blob(path).delete()
        except NotFound:
            report.results.append(DeletionOutcome(uri=uri, status="already_deleted"))
            continue
        except GoogleAPIError as exc:
            logger.error("Failed to delete %s: %s", uri, exc)
            report.results.append(DeletionOutcome(uri=uri, status="failed", reason=str(exc)))
            continue
        report.results.append(DeletionOutcome(uri=uri, status="deleted"))
    if report.failed_count:
        logger.warning("%d of %d chunk deletions failed", report.failed_count, len(uris))
    return report
