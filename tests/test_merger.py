from meetscribe.merger import DurationReconciler, TranscriptMerger
from meetscribe.models import ChunkResult, RecordingMethod, Segment
from meetscribe.transcript_formatter import render_transcript


def seg(speaker, text, start, end):
    return Segment(speaker_tag=speaker, text=text, start_time_seconds=start, end_time_seconds=end)


def result(index, *segments):
    return ChunkResult(
        chunk_index=index,
        transcript_text=render_transcript(segments),
        segments=list(segments),
    )


def test_reconcile_reads_last_annotation():
    assert DurationReconciler.reconcile('[speaker 1] (00:00:00 - 00:00:10) hi (00:12:34)') == 754
    text = (
        '[speaker 1] (00:00:01 - 00:00:05) a\n'
        '[speaker 2] (00:10:00 - 00:12:34) b'
    )
    assert DurationReconciler.reconcile(text) == 754


def test_reconcile_without_annotation_is_zero():
    assert DurationReconciler.reconcile('no times here (really)') == 0
    assert DurationReconciler.reconcile('') == 0


def test_reconcile_ignores_malformed_annotation():
    text = '[speaker 1] (00:00:01 - 00:00:09) ok\nbroken (00:99:00)'
    assert DurationReconciler.reconcile(text) == 9


def test_merge_orders_text_by_chunk_index_and_skips_failures():
    results = [
        result(2, seg(1, 'third', 601.0, 603.0)),
        ChunkResult.empty(1),
        result(0, seg(1, 'first', 1.0, 2.0)),
    ]
    merged = TranscriptMerger().merge(results)
    lines = merged.full_text.split('\n')
    assert len(lines) == 2
    assert lines[0].endswith('first')
    assert lines[1].endswith('third')


def test_merge_speech_logs_sorted_by_start():
    results = [
        result(1, seg(2, 'b', 300.5, 301.0), seg(1, 'd', 320.0, 321.0)),
        result(0, seg(1, 'a', 0.0, 1.0), seg(2, 'c', 299.0, 305.0)),
    ]
    merged = TranscriptMerger().merge(results)
    starts = [s.start_time_seconds for s in merged.speech_logs]
    assert starts == sorted(starts)
    assert [s.text for s in merged.speech_logs] == ['a', 'c', 'b', 'd']


def test_merge_drops_duplicate_segments_across_chunks():
    dup = seg(1, 'repeated', 299.5, 300.5)
    merged = TranscriptMerger().merge([result(0, dup), result(1, dup, seg(2, 'next', 310.0, 311.0))])
    assert [s.text for s in merged.speech_logs] == ['repeated', 'next']


def test_duration_from_last_segment_when_recording():
    results = [result(0, seg(1, 'a', 0.0, 10.0)), result(1, seg(1, 'b', 300.0, 412.7))]
    merged = TranscriptMerger().merge(results, RecordingMethod.RECORD, audio_duration_seconds=999)
    assert merged.duration_seconds == 412


def test_duration_from_audio_length_when_uploaded():
    merged = TranscriptMerger().merge(
        [result(0, seg(1, 'a', 0.0, 10.0))], RecordingMethod.UPLOAD, audio_duration_seconds=1234.9
    )
    assert merged.duration_seconds == 1234


def test_zero_duration_falls_back_to_transcript():
    merged = TranscriptMerger().merge(
        [result(0, seg(1, 'a', 0.0, 10.0)), result(1, seg(2, 'b', 700.0, 754.2))],
        RecordingMethod.UPLOAD,
        audio_duration_seconds=0,
    )
    assert merged.duration_seconds == 754


def test_all_chunks_failed():
    merged = TranscriptMerger().merge([ChunkResult.empty(0), ChunkResult.empty(1)], RecordingMethod.RECORD)
    assert merged.full_text == ''
    assert merged.speech_logs == []
    assert merged.duration_seconds == 0


def test_payload_floors_times():
    merged = TranscriptMerger().merge([result(0, seg(3, 'hi', 1.7, 2.9))], audio_duration_seconds=60)
    payload = merged.to_payload('gs://b/audios/meeting_1_1.webm')
    assert payload['duration'] == 60
    assert payload['audio_id'] == 'gs://b/audios/meeting_1_1.webm'
    assert payload['speechLogs'] == [{'speakerIndex': 3, 'text': 'hi', 'startTime': 1, 'endTime': 2}]
    assert payload['transcript'] == '[speaker 3] (00:00:01 - 00:00:02) hi'


def test_duplicate_segments_dropped_from_text_too():
    dup = seg(1, 'repeated', 299.5, 300.5)
    merged = TranscriptMerger().merge([result(0, dup), result(1, dup, seg(2, 'next', 310.0, 311.0))])
    lines = merged.full_text.split('\n')
    assert len(lines) == 2
    assert lines[0].endswith('repeated')
    assert lines[1].endswith('next')
    assert len(lines) == len(merged.speech_logs)


def test_chunk_made_only_of_duplicates_adds_no_text():
    dup = seg(1, 'repeated', 299.5, 300.5)
    merged = TranscriptMerger().merge([result(0, dup), result(1, seg(1, 'repeated', 299.9, 300.5))])
    assert merged.full_text == '[speaker 1] (00:04:59 - 00:05:00) repeated'
    assert DurationReconciler.reconcile(merged.full_text) == 300
