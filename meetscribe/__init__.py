"""
Core package for the meeting transcription pipeline.

This package splits a stored meeting recording into chunks, runs diarised
speech recognition on the chunks concurrently, rebuilds speaker segments and
merges them into a single meeting transcript that is handed to the backend.
"""
