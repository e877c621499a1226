"""
Audio slicing utilities.

This module cuts a recording into fixed-length chunks for the splitting
service.  Audio decoding and encoding are performed locally using the `pydub`
library which in turn relies on `ffmpeg`.  Chunks are written as WebM/Opus,
the encoding the recogniser is configured for.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError


SUPPORTED_EXTENSIONS = {".webm", ".mp3", ".m4a", ".flac", ".wav", ".mp4", ".ogg"}
CHUNK_FORMAT = "webm"
CHUNK_CODEC = "libopus"

AUDIO_ERRORS = (CouldntDecodeError, CouldntEncodeError)


def is_supported_audio(path: str) -> bool:
    """Check whether the file at ``path`` has a supported audio extension."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def load_audio(input_path: str) -> AudioSegment:
    """Decode an audio file.

    Raises:
        ValueError: If the file extension is unsupported.
        CouldntDecodeError: If ffmpeg cannot decode the file.
    """
    if not is_supported_audio(input_path):
        raise ValueError(f"Unsupported audio type: {Path(input_path).suffix.lower()}")
    return AudioSegment.from_file(input_path)


def chunk_bounds(total_seconds: float, chunk_seconds: float) -> List[Tuple[float, float]]:
    """Return ``(start, duration)`` pairs covering ``total_seconds``.

    Every chunk is ``chunk_seconds`` long except the last, which holds the
    remainder.  A zero-length recording yields no chunks.
    """
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")
    bounds: List[Tuple[float, float]] = []
    start = 0.0
    while start < total_seconds:
        duration = min(chunk_seconds, total_seconds - start)
        bounds.append((start, duration))
        start += chunk_seconds
    return bounds


def export_chunk(audio: AudioSegment, start_seconds: float, duration_seconds: float) -> str:
    """Write one slice of ``audio`` to a temporary WebM file and return its path."""
    start_ms = int(round(start_seconds * 1000))
    end_ms = int(round((start_seconds + duration_seconds) * 1000))
    piece = audio[start_ms:end_ms]
    fd, tmp_path = tempfile.mkstemp(suffix=f".{CHUNK_FORMAT}")
    os.close(fd)
    piece.export(tmp_path, format=CHUNK_FORMAT, codec=CHUNK_CODEC)
    return tmp_path


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temporary file if it exists.

    Args:
        path: Path to the temporary file.  Nothing happens if ``path`` is
            ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass
