import io
from unittest.mock import Mock

import pytest
import requests
from google.api_core.exceptions import Forbidden
from pydub.exceptions import CouldntDecodeError

from meetscribe import main
from meetscribe.config import PipelineConfig
from meetscribe.errors import PersistenceFailed, SplitServiceError
from meetscribe.models import (
    AudioObjectRef,
    ChunkDescriptor,
    DeletionOutcome,
    DeletionReport,
    JobResult,
    RecordingMethod,
    SpeechLog,
    SplitResponse,
)


class FakeJob:
    def __init__(self, exc=None):
        self.exc = exc
        self.runs = []
        self.retries = []

    async def run(self, audio_locator, meeting_id, recording_duration_hint=0.0, concurrency_limit=None,
                  *, recording_method=RecordingMethod.UPLOAD, recording_offset_seconds=0.0, job_id=None):
        self.runs.append({
            'audio_locator': audio_locator,
            'meeting_id': meeting_id,
            'duration': recording_duration_hint,
            'concurrency_limit': concurrency_limit,
            'recording_method': recording_method,
            'offset': recording_offset_seconds,
        })
        if self.exc:
            raise self.exc
        return JobResult(
            transcript='[speaker 1] (00:00:01 - 00:00:02) hi',
            speech_logs=[SpeechLog(speaker_index=1, text='hi', start_time=1, end_time=2)],
            duration=2,
        )

    async def retry_persistence(self, job_id):
        self.retries.append(job_id)
        if job_id == 'missing':
            raise KeyError(job_id)
        return JobResult(transcript='t', speech_logs=[], duration=0)


@pytest.fixture
def client():
    return main.app.test_client()


@pytest.fixture
def job(monkeypatch):
    fake = FakeJob()
    monkeypatch.setattr(main, '_job', fake)
    return fake


def test_transcribe_json(client, job):
    rv = client.post('/transcribe', json={
        'gcsUri': 'gs://b/audios/meeting_4_1.webm',
        'meetingId': '4',
        'duration': '125.5',
        'meetingMethod': 'record',
        'initialRecordingOffsetSeconds': 10,
        'concurrencyLimit': 3,
    })
    assert rv.status_code == 200
    body = rv.get_json()
    assert body['success'] is True
    assert body['duration'] == 2
    assert body['speechLogs'] == [{'speakerIndex': 1, 'text': 'hi', 'startTime': 1, 'endTime': 2}]
    run = job.runs[0]
    assert run['meeting_id'] == 4
    assert run['duration'] == 125.5
    assert run['recording_method'] == RecordingMethod.RECORD
    assert run['offset'] == 10.0
    assert run['concurrency_limit'] == 3


def test_transcribe_multipart_uploads_audio(client, job, monkeypatch):
    monkeypatch.setattr(main, 'config', PipelineConfig(bucket_name='b'))
    upload = Mock(return_value=AudioObjectRef(locator='gs://b/audios/meeting_8_1.webm', byte_size=5))
    monkeypatch.setattr(main.storage, 'upload_recording', upload)
    rv = client.post(
        '/transcribe',
        data={'meetingId': '8', 'duration': '30', 'audio': (io.BytesIO(b'audio'), 'rec.webm')},
        content_type='multipart/form-data',
    )
    assert rv.status_code == 200
    upload.assert_called_once_with(b'audio', 8, 'b')
    assert job.runs[0]['audio_locator'] == 'gs://b/audios/meeting_8_1.webm'


@pytest.mark.parametrize('body', [
    {'gcsUri': 'gs://b/a.webm'},
    {'gcsUri': 'gs://b/a.webm', 'meetingId': 'abc'},
    {'gcsUri': 'gs://b/a.webm', 'meetingId': 1, 'meetingMethod': 'STREAM'},
    {'meetingId': 1},
])
def test_transcribe_bad_request(client, job, body):
    rv = client.post('/transcribe', json=body)
    assert rv.status_code == 400
    assert job.runs == []


def test_transcribe_planning_failure(client, monkeypatch):
    monkeypatch.setattr(main, '_job', FakeJob(exc=SplitServiceError('Splitting service failed: 500')))
    rv = client.post('/transcribe', json={'gcsUri': 'gs://b/a.webm', 'meetingId': 1})
    assert rv.status_code == 502
    assert 'Failed to split audio' in rv.get_json()['error']


def test_transcribe_persistence_failure(client, monkeypatch):
    exc = PersistenceFailed('backend down', meeting_id=1, job_id='job-9')
    monkeypatch.setattr(main, '_job', FakeJob(exc=exc))
    rv = client.post('/transcribe', json={'gcsUri': 'gs://b/a.webm', 'meetingId': 1})
    assert rv.status_code == 500
    assert rv.get_json()['jobId'] == 'job-9'


def test_retry_save(client, job):
    assert client.post('/transcribe/job-9/retry').status_code == 200
    assert client.post('/transcribe/missing/retry').status_code == 404
    assert job.retries == ['job-9', 'missing']


def test_stt_result_lookup(client, monkeypatch):
    fetch = Mock(return_value=Mock(status_code=200, json=lambda: {'transcript': 'hi'}))
    monkeypatch.setattr(main.MeetingResultClient, 'fetch', lambda self, meeting_id: fetch(meeting_id))
    rv = client.get('/transcribe?sttResultId=15')
    assert rv.status_code == 200
    assert rv.get_json() == {'transcript': 'hi'}
    fetch.assert_called_once_with(15)
    assert client.get('/transcribe').status_code == 400
    assert client.get('/transcribe?sttResultId=x').status_code == 400


def test_split_audio(client, monkeypatch):
    response = SplitResponse(
        chunks=[ChunkDescriptor(chunk_index=0, locator='gs://b/chunks/meeting_2/chunk_000.webm',
                                start_offset_seconds=0, duration_seconds=42)],
        total_duration=42,
    )
    split = Mock(return_value=response)
    monkeypatch.setattr(main.splitter, 'split_recording', split)
    rv = client.post('/split-audio', json={'gcsUri': 'gs://b/audios/meeting_2_1.webm', 'chunkDuration': 300,
                                           'meetingId': 2})
    assert rv.status_code == 200
    assert rv.get_json()['chunks'][0]['gcsUri'] == 'gs://b/chunks/meeting_2/chunk_000.webm'
    split.assert_called_once_with('gs://b/audios/meeting_2_1.webm', 300.0, 2)
    assert client.post('/split-audio', json={}).status_code == 400


def test_delete_chunks(client, monkeypatch):
    report = DeletionReport(results=[DeletionOutcome(uri='gs://b/c.webm', status='deleted')])
    delete = Mock(return_value=report)
    monkeypatch.setattr(main.storage, 'delete_objects', delete)
    rv = client.post('/delete-chunks', json={'gcsUris': ['gs://b/c.webm']})
    assert rv.status_code == 200
    assert rv.get_json()['deletedCount'] == 1
    delete.assert_called_once_with(['gs://b/c.webm'])


def test_gcs_event_runs_job_for_recordings(job):
    main.gcs_event({'bucket': 'b', 'name': 'audios/meeting_21_1700000000000.webm'}, None)
    main.gcs_event({'bucket': 'b', 'name': 'chunks/meeting_21/chunk_000.webm'}, None)
    main.gcs_event({'bucket': 'b'}, None)
    assert len(job.runs) == 1
    assert job.runs[0]['meeting_id'] == 21
    assert job.runs[0]['audio_locator'] == 'gs://b/audios/meeting_21_1700000000000.webm'


@pytest.mark.parametrize('limit', [-1, 0, 'many'])
def test_transcribe_rejects_bad_concurrency_limit(client, job, limit):
    rv = client.post('/transcribe', json={'gcsUri': 'gs://b/a.webm', 'meetingId': 1, 'concurrencyLimit': limit})
    assert rv.status_code == 400
    assert 'concurrencyLimit' in rv.get_json()['error']
    assert job.runs == []


def test_stt_result_lookup_backend_unreachable(client, monkeypatch):
    def refuse(self, meeting_id):
        raise requests.ConnectionError('connection refused')

    monkeypatch.setattr(main.MeetingResultClient, 'fetch', refuse)
    rv = client.get('/transcribe?sttResultId=15')
    assert rv.status_code == 500
    assert 'connection refused' in rv.get_json()['error']


@pytest.mark.parametrize('exc', [
    Forbidden('bucket access denied'),
    CouldntDecodeError('Decoding failed. ffmpeg returned error code: 1'),
])
def test_split_audio_failures_return_json(client, monkeypatch, exc):
    monkeypatch.setattr(main.splitter, 'split_recording', Mock(side_effect=exc))
    rv = client.post('/split-audio', json={'gcsUri': 'gs://b/audios/meeting_2_1.webm'})
    assert rv.status_code == 500
    assert rv.get_json()['error'].startswith('Failed to split audio')


def test_split_audio_bad_chunk_duration(client):
    rv = client.post('/split-audio', json={'gcsUri': 'gs://b/a.webm', 'chunkDuration': 'long'})
    assert rv.status_code == 400
