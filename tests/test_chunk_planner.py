from unittest.mock import Mock

import pytest
import requests

from meetscribe.chunk_planner import ChunkPlanner
from meetscribe.errors import MalformedSplitResponseError, PlanningFailed, SplitServiceError

URL = 'https://split.example.com/split'
AUDIO = 'gs://bucket/audios/meeting_7_1700000000000.webm'


def wire_chunk(index, start, duration=300):
    return {
        'chunkIndex': index,
        'gcsUri': f'gs://bucket/chunks/meeting_7/chunk_{index:03d}.webm',
        'startTime': start,
        'duration': duration,
    }


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json, timeout))
        if self.exc:
            raise self.exc
        return self.response


def respond(body, status=200):
    return Mock(ok=200 <= status < 300, status_code=status, text='body', json=lambda: body)


def planner_for(body, status=200):
    session = FakeSession(respond(body, status))
    return ChunkPlanner(URL, session=session), session


def test_plan_returns_sorted_descriptors():
    body = {
        'chunks': [wire_chunk(1, 300), wire_chunk(0, 0), wire_chunk(2, 600, 54.5)],
        'totalDuration': 654.5,
    }
    planner, session = planner_for(body)
    chunks = planner.plan(AUDIO, 7, 300)
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert chunks[2].start_offset_seconds == 600
    assert chunks[2].duration_seconds == 54.5
    assert chunks[0].locator.endswith('chunk_000.webm')
    url, payload, _ = session.calls[0]
    assert url == URL
    assert payload == {'gcsUri': AUDIO, 'chunkDuration': 300, 'meetingId': 7}


def test_error_status_raises_split_service_error():
    planner, _ = planner_for({'error': 'boom'}, status=500)
    with pytest.raises(SplitServiceError) as excinfo:
        planner.plan(AUDIO, 7)
    assert excinfo.value.status_code == 500
    assert isinstance(excinfo.value, PlanningFailed)


def test_transport_error_raises_split_service_error():
    planner = ChunkPlanner(URL, session=FakeSession(exc=requests.ConnectionError('refused')))
    with pytest.raises(SplitServiceError):
        planner.plan(AUDIO, 7)


def test_missing_url_is_a_planning_failure():
    with pytest.raises(SplitServiceError):
        ChunkPlanner('', session=FakeSession()).plan(AUDIO, 7)


def test_invalid_json_body():
    session = FakeSession(Mock(ok=True, status_code=200, json=Mock(side_effect=ValueError('no json'))))
    with pytest.raises(MalformedSplitResponseError):
        ChunkPlanner(URL, session=session).plan(AUDIO, 7)


@pytest.mark.parametrize('body', [
    {},
    {'chunks': None},
    {'chunks': []},
    ['not', 'a', 'dict'],
])
def test_missing_chunk_list(body):
    planner, _ = planner_for(body)
    with pytest.raises(MalformedSplitResponseError):
        planner.plan(AUDIO, 7)


def test_missing_locator():
    chunk = wire_chunk(0, 0)
    del chunk['gcsUri']
    planner, _ = planner_for({'chunks': [chunk]})
    with pytest.raises(MalformedSplitResponseError):
        planner.plan(AUDIO, 7)


def test_non_contiguous_indexes():
    planner, _ = planner_for({'chunks': [wire_chunk(0, 0), wire_chunk(2, 300)]})
    with pytest.raises(MalformedSplitResponseError, match='contiguous'):
        planner.plan(AUDIO, 7)


def test_overlap_beyond_tolerance():
    planner, _ = planner_for({'chunks': [wire_chunk(0, 0), wire_chunk(1, 290)]})
    with pytest.raises(MalformedSplitResponseError, match='overlap'):
        planner.plan(AUDIO, 7)


def test_overlap_within_tolerance_is_accepted():
    planner, _ = planner_for({'chunks': [wire_chunk(0, 0), wire_chunk(1, 299.5)]})
    assert len(planner.plan(AUDIO, 7)) == 2


def test_chunks_must_cover_recording():
    planner, _ = planner_for({'chunks': [wire_chunk(0, 0)], 'totalDuration': 400})
    with pytest.raises(MalformedSplitResponseError):
        planner.plan(AUDIO, 7)


def test_target_duration_must_be_positive():
    planner, _ = planner_for({'chunks': [wire_chunk(0, 0)]})
    with pytest.raises(ValueError):
        planner.plan(AUDIO, 7, 0)
