"""
Client for the backend that stores meeting STT results.

The merged transcript is POSTed to
``{BACKEND_API_URL}/api/v1/meetings/{meeting_id}/stt-result``.  Only connection
failures, where the request never reached the backend, are retried; an error
status or a timeout surfaces as :class:`~meetscribe.errors.PersistenceFailed`
so the caller decides whether to resend.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import PersistenceFailed
from .models import MergedTranscript

logger = logging.getLogger(__name__)


@retry(
    retry=retry_if_exception_type(requests.ConnectionError),
    wait=wait_exponential(multiplier=1),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _post_result(
    session: requests.Session, url: str, payload: Dict[str, Any], timeout: float
) -> requests.Response:
    return session.post(url, json=payload, timeout=timeout)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"Backend DB update failed: {response.status_code} {response.reason}"


class MeetingResultClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def result_url(self, meeting_id: int) -> str:
        return f"{self.base_url}/api/v1/meetings/{meeting_id}/stt-result"

    def save(self, meeting_id: int, merged: MergedTranscript, audio_locator: str) -> None:
        """Store ``merged`` for ``meeting_id``.

        Raises:
            PersistenceFailed: If the backend is unreachable or rejects the
                result.  The exception carries ``merged`` for a later retry.
        """
        url = self.result_url(meeting_id)
        payload = merged.to_payload(audio_locator)
        logger.info(
            "Sending STT result for meeting %s: duration=%s, transcript length=%d, speechLogs=%d",
            meeting_id,
            payload["duration"],
            len(payload["transcript"]),
            len(payload["speechLogs"]),
        )
        try:
            response = _post_result(self.session, url, payload, self.timeout_seconds)
        except requests.RequestException as exc:
            logger.error("Error calling backend for meeting %s: %s", meeting_id, exc)
            raise PersistenceFailed(
                f"Failed to save STT results to DB: {exc}",
                meeting_id=meeting_id,
                merged=merged,
            ) from exc

        if not response.ok:
            message = _error_message(response)
            logger.error(
                "Backend rejected STT result for meeting %s: %s %s",
                meeting_id,
                response.status_code,
                message,
            )
            raise PersistenceFailed(
                f"Failed to save STT results to DB (Backend error): {message}",
                meeting_id=meeting_id,
                status_code=response.status_code,
                merged=merged,
            )
        logger.info("Saved STT result for meeting %s", meeting_id)

    def fetch(self, meeting_id: int) -> requests.Response:
        """GET the stored STT result; the caller inspects the response."""
        return self.session.get(self.result_url(meeting_id), timeout=self.timeout_seconds)
