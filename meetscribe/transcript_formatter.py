"""
Transcript formatting utilities.

The Speech‑to‑Text API returns a deeply nested structure where words are
nested within alternatives and results.  The functions in this module
flatten that structure into :class:`~meetscribe.models.WordToken` records and
fold them into speaker segments.

A new segment starts whenever the speaker tag changes or the pause since the
previous word reaches the silence threshold.  Segment times are shifted by the
chunk's offset so every segment is positioned on the full recording's
timeline.  Rendered lines look like::

    [speaker 1] (00:05:02 - 00:05:09) so the plan for next week is
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Segment, WordToken

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_THRESHOLD_SECONDS = 5.0
SPEAKER_LABEL = "speaker"
SUBTOKEN_MARKER = "▁"

_DURATION_RE = re.compile(r"^(-?[0-9]+(?:\.[0-9]+)?)s$")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_offset(value: Any) -> float:
    """Convert a protobuf ``Duration`` in any of its JSON shapes to seconds.

    Accepts ``"1.500s"`` strings (``MessageToDict`` output), ``{"seconds":
    "1", "nanos": 500000000}`` objects, plain numbers and ``timedelta``.
    Unknown shapes count as zero.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _DURATION_RE.match(value.strip())
        return float(match.group(1)) if match else 0.0
    if isinstance(value, dict):
        seconds = int(value.get("seconds", 0) or 0)
        nanos = int(value.get("nanos", 0) or 0)
        return seconds + nanos / 1_000_000_000
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    return 0.0


def flatten_word_info(data: Dict[str, Any]) -> List[WordToken]:
    """Extract a flat list of words from a STT response dictionary.

    Only the first (most probable) alternative of each result is used.  Words
    are taken from every result in order, as the recogniser returns them.
    """
    words: List[WordToken] = []
    for result in data.get("results", []) or []:
        alternatives = result.get("alternatives") or []
        if not alternatives:
            continue
        for wi in alternatives[0].get("words", []) or []:
            text = wi.get("word")
            if not text:
                continue
            words.append(
                WordToken(
                    text=text,
                    speaker_tag=int(wi.get("speakerTag", 0) or 0),
                    start_time_seconds=parse_offset(wi.get("startTime")),
                    end_time_seconds=parse_offset(wi.get("endTime")),
                )
            )
    return words


def format_timestamp(total_seconds: float) -> str:
    """Render seconds as ``HH:MM:SS``; negative values clamp to zero."""
    total_seconds = max(0, math.floor(total_seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def hms_to_seconds(hms: str) -> int:
    """Parse ``HH:MM:SS`` into seconds, returning 0 when it does not parse."""
    parts = hms.strip().split(":")
    if len(parts) != 3:
        return 0
    try:
        hours, minutes, seconds = (int(p) for p in parts)
    except ValueError:
        return 0
    return hours * 3600 + minutes * 60 + seconds


def collapse_subtokens(text: str) -> str:
    """Turn word-piece output (``▁안녕 하세요 ▁여러분``) into plain words."""
    if SUBTOKEN_MARKER in text:
        text = _WHITESPACE_RE.sub("", text).replace(SUBTOKEN_MARKER, " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def segment_key(segment: Segment) -> Tuple[str, str]:
    """Identity of a segment for de-duplication: its text and start second."""
    return (segment.text, format_timestamp(segment.start_time_seconds))


def dedupe_segments(segments: Iterable[Segment]) -> List[Segment]:
    """Drop segments repeating an earlier segment's text and start second."""
    seen = set()
    unique: List[Segment] = []
    for segment in segments:
        key = segment_key(segment)
        if key in seen:
            continue
        seen.add(key)
        unique.append(segment)
    return unique


class DiarizedSegmentBuilder:
    """Fold a chunk's words into speaker segments on the recording timeline."""

    def __init__(self, silence_threshold_seconds: float = DEFAULT_SILENCE_THRESHOLD_SECONDS) -> None:
        if silence_threshold_seconds <= 0:
            raise ValueError("silence_threshold_seconds must be positive")
        self.silence_threshold_seconds = silence_threshold_seconds

    def build(self, words: Iterable[WordToken], chunk_offset_seconds: float = 0.0) -> List[Segment]:
        segments: List[Segment] = []
        current_speaker: Optional[int] = None
        current_text = ""
        current_start: Optional[float] = None
        last_word_end: Optional[float] = None

        for word in words:
            start = word.start_time_seconds + chunk_offset_seconds
            end = word.end_time_seconds + chunk_offset_seconds
            silence_gap = start - last_word_end if last_word_end is not None else 0.0

            if (
                current_speaker is None
                or word.speaker_tag != current_speaker
                or silence_gap >= self.silence_threshold_seconds
            ):
                if current_text and current_start is not None:
                    segments.append(
                        Segment(
                            speaker_tag=current_speaker,
                            text=current_text.strip(),
                            start_time_seconds=current_start,
                            end_time_seconds=last_word_end,
                        )
                    )
                current_speaker = word.speaker_tag
                current_text = word.text
                current_start = start
            else:
                current_text += f" {word.text}"
            last_word_end = end

        if current_text and current_speaker is not None and current_start is not None:
            segments.append(
                Segment(
                    speaker_tag=current_speaker,
                    text=current_text.strip(),
                    start_time_seconds=current_start,
                    end_time_seconds=last_word_end,
                )
            )

        return self._post_process(segments)

    @staticmethod
    def _post_process(segments: Sequence[Segment]) -> List[Segment]:
        cleaned: List[Segment] = []
        for segment in dedupe_segments(segments):
            text = collapse_subtokens(segment.text)
            if not text:
                continue
            cleaned.append(segment.model_copy(update={"text": text}))
        return cleaned


def render_segment(segment: Segment) -> str:
    start = format_timestamp(segment.start_time_seconds)
    end = format_timestamp(segment.end_time_seconds)
    return f"[{SPEAKER_LABEL} {segment.speaker_tag}] ({start} - {end}) {segment.text}"


def render_transcript(segments: Iterable[Segment]) -> str:
    return "\n".join(render_segment(s) for s in segments)
