"""
HTTP and Cloud Function entrypoints for the transcription pipeline.

Routes:

* ``POST /transcribe`` – run a transcription job for a stored recording
  (JSON body) or for an uploaded ``audio`` file (multipart form).
* ``POST /transcribe/<job_id>/retry`` – resend a transcript whose save failed.
* ``GET /transcribe?sttResultId=<meetingId>`` – fetch the stored STT result.
* ``POST /split-audio`` – the splitting service used by the chunk planner.
* ``POST /delete-chunks`` – delete chunk objects by ``gs://`` URI.

``gcs_event`` is a background function triggered by Cloud Storage uploads of
``audios/meeting_{id}_{millis}.webm`` recordings.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, Optional

import requests
from flask import Flask, jsonify, request
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

from . import audio_processor, splitter, storage
from .config import PipelineConfig
from .errors import InvalidGcsUriError, PersistenceFailed, PlanningFailed
from .models import RecordingMethod
from .persistence import MeetingResultClient
from .tasks import TranscriptionJob

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

app = Flask(__name__)
config = PipelineConfig()

RECORDING_NAME_RE = re.compile(r"^audios/meeting_(\d+)_\d+\.webm$")

_job: Optional[TranscriptionJob] = None


def get_job() -> TranscriptionJob:
    """The process-wide job runner; its store keeps transcripts awaiting a retry."""
    global _job
    if _job is None:
        _job = TranscriptionJob.from_config(config)
    return _job


def _log_event(event: str, **fields: Any) -> None:
    logger.info(json.dumps({"event": event, **fields}))


def _error(message: str, status: int, **extra: Any):
    return jsonify({"error": message, **extra}), status


def _parse_float(value: Optional[str], default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    return float(value)


def _transcription_params() -> Dict[str, Any]:
    """Read job parameters from a JSON body or a multipart form.

    Raises:
        ValueError: If a required field is missing or malformed.
    """
    if request.files.get("audio") is not None:
        fields: Dict[str, Any] = request.form.to_dict()
    else:
        fields = request.get_json(silent=True) or {}

    meeting_id_raw = fields.get("meetingId")
    if meeting_id_raw in (None, ""):
        raise ValueError("Meeting ID not provided.")
    try:
        meeting_id = int(meeting_id_raw)
    except (TypeError, ValueError):
        raise ValueError("Invalid Meeting ID.") from None

    method_raw = fields.get("meetingMethod") or RecordingMethod.UPLOAD.value
    try:
        method = RecordingMethod(str(method_raw).upper())
    except ValueError:
        raise ValueError(f"Invalid meetingMethod: {method_raw}") from None

    concurrency_raw = fields.get("concurrencyLimit")
    concurrency_limit = None
    if concurrency_raw not in (None, ""):
        try:
            concurrency_limit = int(concurrency_raw)
        except (TypeError, ValueError):
            raise ValueError("Invalid concurrencyLimit.") from None
        if concurrency_limit < 1:
            raise ValueError("concurrencyLimit must be at least 1.")

    return {
        "meeting_id": meeting_id,
        "gcs_uri": fields.get("gcsUri"),
        "duration": _parse_float(fields.get("duration")),
        "recording_offset": _parse_float(fields.get("initialRecordingOffsetSeconds")),
        "recording_method": method,
        "concurrency_limit": concurrency_limit,
    }


@app.route("/transcribe", methods=["POST"])
def transcribe():
    try:
        params = _transcription_params()
    except ValueError as exc:
        return _error(str(exc), 400)

    meeting_id = params["meeting_id"]
    gcs_uri = params["gcs_uri"]
    audio_file = request.files.get("audio")
    if audio_file is not None:
        if not config.bucket_name:
            return _error("Server configuration error: GCS bucket name is missing.", 500)
        ref = storage.upload_recording(audio_file.read(), meeting_id, config.bucket_name)
        gcs_uri = ref.locator
    if not gcs_uri:
        return _error("gcsUri or audio file is required", 400)

    _log_event("start_transcription", meeting_id=meeting_id, gcs_uri=gcs_uri)
    try:
        result = asyncio.run(
            get_job().run(
                gcs_uri,
                meeting_id,
                params["duration"],
                params["concurrency_limit"],
                recording_method=params["recording_method"],
                recording_offset_seconds=params["recording_offset"],
            )
        )
    except PlanningFailed as exc:
        logger.exception("Chunk planning failed for meeting %s", meeting_id)
        return _error(f"Failed to split audio: {exc}", 502)
    except PersistenceFailed as exc:
        logger.exception("Saving STT result failed for meeting %s", meeting_id)
        return _error(str(exc), 500, jobId=exc.job_id)

    _log_event("transcription_saved", meeting_id=meeting_id, duration=result.duration)
    return jsonify({"success": True, **result.to_payload()}), 200


@app.route("/transcribe/<job_id>/retry", methods=["POST"])
def retry_save(job_id: str):
    try:
        result = asyncio.run(get_job().retry_persistence(job_id))
    except KeyError:
        return _error(f"Unknown job {job_id}", 404)
    except PersistenceFailed as exc:
        logger.exception("Retrying save failed for job %s", job_id)
        return _error(str(exc), 500, jobId=job_id)
    return jsonify({"success": True, **result.to_payload()}), 200


@app.route("/transcribe", methods=["GET"])
def stt_result():
    stt_result_id = request.args.get("sttResultId")
    if not stt_result_id:
        return _error("STT Result ID was not provided.", 400)
    try:
        meeting_id = int(stt_result_id)
    except ValueError:
        return _error("Invalid STT Result ID.", 400)

    client = MeetingResultClient(config.backend_api_url, timeout_seconds=config.http_timeout_seconds)
    try:
        response = client.fetch(meeting_id)
    except requests.RequestException as exc:
        logger.exception("Fetching STT result failed for meeting %s", meeting_id)
        return _error(f"Failed to fetch STT result: {exc}", 500)
    try:
        body = response.json()
    except ValueError:
        return _error("Backend returned an invalid response.", 502)
    return jsonify(body), response.status_code


@app.route("/split-audio", methods=["POST"])
def split_audio():
    data = request.get_json(silent=True) or {}
    gcs_uri = data.get("gcsUri")
    if not gcs_uri:
        return _error("gcsUri is required", 400)
    meeting_id = data.get("meetingId")
    try:
        chunk_duration = _parse_float(data.get("chunkDuration"), config.chunk_duration_seconds)
        response = splitter.split_recording(
            gcs_uri, chunk_duration, int(meeting_id) if meeting_id is not None else None
        )
    except (InvalidGcsUriError, ValueError) as exc:
        return _error(f"Failed to split audio: {exc}", 400)
    except (GoogleAPIError, GoogleAuthError, OSError, *audio_processor.AUDIO_ERRORS) as exc:
        logger.exception("Splitting %s failed", gcs_uri)
        return _error(f"Failed to split audio: {exc}", 500)
    _log_event("split_completed", gcs_uri=gcs_uri, chunks=len(response.chunks))
    return jsonify(response.to_payload()), 200


@app.route("/delete-chunks", methods=["POST"])
def delete_chunks():
    data = request.get_json(silent=True) or {}
    uris = data.get("gcsUris")
    if not isinstance(uris, list):
        uris = []
    report = storage.delete_objects(uris)
    _log_event("chunks_deleted", deleted=report.deleted_count, failed=report.failed_count)
    return jsonify(report.to_payload()), 200


def gcs_event(event: Dict[str, Any], context: Any) -> None:
    """Background function triggered by Cloud Storage.

    Recordings uploaded as ``audios/meeting_{id}_{millis}.webm`` are
    transcribed for meeting ``id``; other uploads (including chunk objects)
    are ignored.
    """
    bucket = event.get("bucket")
    name = event.get("name")
    if not bucket or not name:
        logger.warning("Received event with missing bucket or name: %s", event)
        return
    match = RECORDING_NAME_RE.match(name)
    if not match:
        logger.info("Unhandled upload path: %s", name)
        return
    gcs_uri = storage.to_gcs_uri(bucket, name)
    _log_event("gcs_trigger", gcs_uri=gcs_uri)
    asyncio.run(get_job().run(gcs_uri, int(match.group(1))))


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
