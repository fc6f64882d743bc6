import httpx
import pytest

from vaultsync.client import RemoteStoreError, TeamStateClient
from vaultsync.schemas import StateRecord


def test_bulk_push_then_pull(remote):
    updated = remote.push_all([
        StateRecord.from_payload('team2', {'score': 61, 'endless': [{'name': 'Ada', 'score': 3, 'level': 1}]},
                                 include_endless=True),
        {'team': 'team1', 'progress': {'binary': True}},
        {'team': ''},
    ])
    assert updated == 2

    records = remote.pull_all()
    assert [r.team for r in records] == ['team1', 'team2']
    assert records[0].progress['binary'] is True
    assert records[1].score == 61
    assert records[1].endless[0].name == 'Ada'


def test_team_round_trip_and_meta(remote):
    record = StateRecord.from_payload('team1', {
        'progress': {'password': True},
        'progressMeta': {'phishing': {'percent': 25}},
    })
    remote.put_team_state(record, 'manual')
    state = remote.get_team_state('team1')
    assert state['progress']['password'] is True
    assert remote.get_progress_meta('team1') == {'phishing': 25, 'password': 100}


def test_error_answers_raise(remote):
    with pytest.raises(RemoteStoreError) as excinfo:
        remote.get_progress_meta('nobody')
    assert excinfo.value.status_code == 404
    with pytest.raises(RemoteStoreError):
        remote.get_team_state('x' * 200)


def test_ok_false_body_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={'ok': False}))
    with TeamStateClient('http://testserver', transport=transport) as client:
        with pytest.raises(RemoteStoreError):
            client.pull_all()
