"""
Merging of per-chunk transcription results.

:class:`TranscriptMerger` turns the results of all chunks into a single
meeting transcript.  Text follows chunk order; speech logs follow absolute
start time regardless of chunk boundaries.  A segment repeated across chunks
(same text and start second) is kept once in both.  A failed chunk contributes
nothing, which leaves a gap in coverage rather than an error marker.

:class:`DurationReconciler` is the fallback used when the primary duration
source is zero: it reads the end time of the last ``(start - end)`` annotation
in the rendered transcript.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable, List, Optional, Set, Tuple

from .models import ChunkResult, MergedTranscript, RecordingMethod, Segment
from .transcript_formatter import dedupe_segments, hms_to_seconds, render_transcript, segment_key

logger = logging.getLogger(__name__)

_TIME = r"\d{1,3}:[0-5]\d:[0-5]\d"
_ANNOTATION_RE = re.compile(rf"\((?:{_TIME}\s*[-–]\s*)?({_TIME})\)")


class DurationReconciler:
    @staticmethod
    def reconcile(full_text: str) -> int:
        """Seconds at the end of the last time annotation, or 0 if there is none."""
        matches = _ANNOTATION_RE.findall(full_text or "")
        if not matches:
            return 0
        return hms_to_seconds(matches[-1])


class TranscriptMerger:
    def __init__(self, reconciler: Optional[DurationReconciler] = None) -> None:
        self.reconciler = reconciler if reconciler is not None else DurationReconciler()

    def merge(
        self,
        results: Iterable[ChunkResult],
        recording_method: RecordingMethod = RecordingMethod.UPLOAD,
        audio_duration_seconds: float = 0.0,
    ) -> MergedTranscript:
        ordered = sorted(results, key=lambda r: r.chunk_index)
        failed = [r.chunk_index for r in ordered if r.is_empty]
        if failed:
            logger.warning("Merging without chunks %s", failed)

        segments: List[Segment] = [s for r in ordered for s in r.segments]
        segments.sort(key=lambda s: s.start_time_seconds)
        speech_logs = dedupe_segments(segments)
        full_text = self._render_deduplicated(ordered)

        duration = self._primary_duration(speech_logs, recording_method, audio_duration_seconds)
        if duration == 0:
            duration = self.reconciler.reconcile(full_text)
            if duration:
                logger.info("Duration reconciled from transcript: %d seconds", duration)

        logger.info(
            "Merged %d chunks into %d speech logs (%d seconds)",
            len(ordered),
            len(speech_logs),
            duration,
        )
        return MergedTranscript(
            full_text=full_text,
            speech_logs=speech_logs,
            duration_seconds=duration,
        )

    @staticmethod
    def _render_deduplicated(ordered: List[ChunkResult]) -> str:
        """Chunk texts in chunk order, re-rendered where a segment repeats an earlier one."""
        seen: Set[Tuple[str, str]] = set()
        lines: List[str] = []
        for result in ordered:
            if not result.transcript_text:
                continue
            kept: List[Segment] = []
            for segment in result.segments:
                key = segment_key(segment)
                if key not in seen:
                    seen.add(key)
                    kept.append(segment)
            if len(kept) == len(result.segments):
                lines.append(result.transcript_text)
            elif kept:
                lines.append(render_transcript(kept))
        return "\n".join(lines)

    @staticmethod
    def _primary_duration(
        speech_logs: List[Segment],
        recording_method: RecordingMethod,
        audio_duration_seconds: float,
    ) -> int:
        if recording_method == RecordingMethod.RECORD:
            return math.floor(speech_logs[-1].end_time_seconds) if speech_logs else 0
        return max(0, math.floor(audio_duration_seconds or 0))
