import json
import threading

import httpx

from vaultsync.client import LocalCache, MemoryStorage, StateSync, TeamStateClient, create_sync
from vaultsync.config import SyncSettings


class FakeRemote:
    """MockTransport-backed remote that records every request."""

    def __init__(self, state=None, put_status=200, get_error=None):
        self.state = state if state is not None else {}
        self.put_status = put_status
        self.get_error = get_error
        self.requests = []
        self.on_put = None

    def handler(self, request):
        self.requests.append(request)
        if request.method == 'GET':
            if self.get_error is not None:
                raise self.get_error(request)
            return httpx.Response(200, json={'ok': True, 'state': self.state})
        if self.on_put is not None:
            self.on_put(json.loads(request.content))
        if self.put_status != 200:
            return httpx.Response(self.put_status, json={'ok': False, 'error': 'boom'})
        return httpx.Response(200, json={'ok': True})

    def puts(self):
        return [json.loads(r.content) for r in self.requests if r.method == 'PUT']

    def gets(self):
        return [r for r in self.requests if r.method == 'GET']


def _engine(fake, settings, timers, team='team1', storage=None, **kwargs):
    client = TeamStateClient('http://testserver', timeout=2, transport=httpx.MockTransport(fake.handler))
    cache = LocalCache(team, storage if storage is not None else MemoryStorage())
    return cache, StateSync(team, cache, client, settings=settings, timer_factory=timers, **kwargs)


def test_mutations_within_debounce_collapse_into_one_push(settings, timers):
    fake = FakeRemote()
    cache, engine = _engine(fake, settings, timers)

    cache.set_progress_flag('binary', True)
    cache.adjust_score(-5, 'hint')
    cache.set_digit('binary', '4')

    assert len(timers.pending()) == 1
    assert timers.pending()[0].interval == 1.2
    assert fake.puts() == []
    timers.fire_all()

    puts = fake.puts()
    assert len(puts) == 1
    assert puts[0]['team'] == 'team1'
    assert puts[0]['reason'] == 'vault'
    assert puts[0]['progress']['binary'] is True
    assert puts[0]['score'] == 95
    assert puts[0]['vault'] == {'binary': '4'}
    assert engine.last_push > 0


def test_push_requested_while_in_flight_is_deferred(settings, timers):
    fake = FakeRemote()
    cache, engine = _engine(fake, settings, timers)
    results = []

    def reenter(_payload):
        if len(fake.puts()) == 1:
            results.append(engine.push('second'))
            results.append(engine.push('third'))

    fake.on_put = reenter
    assert engine.save_now('first') is True
    # the nested requests never reached the wire
    assert results == [False, False]
    assert [p['reason'] for p in fake.puts()] == ['first']
    # only the newest pending reason is re-queued, through the debounce
    pending = timers.pending()
    assert len(pending) == 1
    timers.fire_all()
    assert [p['reason'] for p in fake.puts()] == ['first', 'third']
    assert not engine.busy


def test_push_failure_is_logged_and_dropped(settings, timers, caplog):
    fake = FakeRemote(put_status=500)
    _, engine = _engine(fake, settings, timers)
    assert engine.save_now('manual') is False
    assert not engine.busy
    assert timers.pending() == []
    assert engine.last_push == 0
    assert 'push failed' in caplog.text


def test_pull_applies_remote_state(settings, timers):
    fake = FakeRemote(state={'score': 77, 'progress': {'encryption': True}, 'vault': {'encryption': '3'}})
    ready = []
    cache, engine = _engine(fake, settings, timers, on_ready=ready.append)
    assert engine.pull(initial=True) is True
    assert cache.score() == 77
    assert cache.progress()['encryption'] is True
    assert cache.storage.get('lock_digit_caesar_shift') == '3'
    assert ready == ['team1']
    # applying remote state is not a local mutation
    assert timers.pending() == []


def test_pull_timeout_is_a_failed_cycle(settings, timers, caplog):
    fake = FakeRemote(get_error=lambda request: httpx.ReadTimeout('timed out', request=request))
    cache, engine = _engine(fake, settings, timers, storage=MemoryStorage({'team1_score': '64'}))
    assert engine.request_pull() is False
    assert cache.score() == 64
    assert engine.last_pull == 0
    assert 'pull failed' in caplog.text


def test_pull_rejects_malformed_body(settings, timers):
    def handler(request):
        return httpx.Response(200, json={'ok': True})

    client = TeamStateClient('http://testserver', transport=httpx.MockTransport(handler))
    cache = LocalCache('team1', MemoryStorage())
    engine = StateSync('team1', cache, client, settings=settings, timer_factory=timers)
    assert engine.pull() is False


def test_reset_schedules_one_reload(settings, timers):
    fake = FakeRemote(state={'vault': {'resetVersion': 4}})
    reloads = []
    cache, engine = _engine(fake, settings, timers, on_reload=reloads.append)

    engine.pull()
    engine.pull()
    pending = timers.pending()
    assert len(pending) == 1
    assert pending[0].interval == 0.12
    timers.fire_all()
    assert reloads == ['team1']
    assert cache.reset_version() == '4'


def test_reload_without_handler_pulls_again(settings, timers):
    fake = FakeRemote(state={'vault': {'resetVersion': 1}})
    _, engine = _engine(fake, settings, timers)
    engine.pull()
    timers.fire_all()
    assert len(fake.gets()) == 2


def test_triggers(settings, timers):
    fake = FakeRemote()
    _, engine = _engine(fake, settings, timers)

    engine.handle_visibility(hidden=True)
    assert len(timers.pending()) == 1
    engine.handle_visibility(hidden=False)
    assert len(fake.gets()) == 1

    engine.handle_online()
    assert len(fake.gets()) == 2
    assert len(timers.pending()) == 1

    engine.handle_unload()
    assert [p['reason'] for p in fake.puts()] == ['unload']
    # save_now cancelled the queued debounce
    assert timers.pending() == []


def test_stop_cancels_timers_and_ignores_later_mutations(settings, timers):
    fake = FakeRemote()
    cache, engine = _engine(fake, settings, timers)
    cache.push_time(12)
    engine.stop()
    assert timers.pending() == []
    cache.push_time(13)
    assert timers.pending() == []
    timers.fire_all()
    assert fake.puts() == []


def test_start_runs_initial_pull_on_background_thread(settings, timers):
    fake = FakeRemote(state={'score': 55})
    ready = threading.Event()
    cache, engine = _engine(fake, settings, timers, on_ready=lambda team: ready.set())
    engine.start()
    try:
        assert ready.wait(5)
        assert cache.score() == 55
    finally:
        engine.stop(timeout=5)
    assert len(fake.gets()) == 1


def test_create_sync_wires_components():
    settings = SyncSettings(base_url='http://testserver', debounce_ms=10)
    engine = create_sync('Team3', MemoryStorage(), settings=settings,
                         transport=httpx.MockTransport(lambda request: httpx.Response(200, json={'ok': True})))
    try:
        assert engine.team == 'team3'
        assert engine.cache.team == 'team3'
        assert engine.settings is settings
        assert not engine.client.is_closed
    finally:
        engine.stop()
    assert engine.client.is_closed


def test_stop_leaves_caller_owned_client_open(settings, timers):
    _, engine = _engine(FakeRemote(), settings, timers)
    engine.stop()
    assert not engine.client.is_closed
    engine.client.close()


def test_two_devices_share_state_through_server(make_device, timers):
    first_cache, first = make_device('team1')
    second_cache, second = make_device('team1')

    first_cache.set_progress_flag('phishing', True)
    first_cache.set_digit('phishing', '7')
    timers.fire_all()

    assert second.pull() is True
    assert second_cache.progress()['phishing'] is True
    assert second_cache.storage.get('lock_digit_phishing_total') == '7'
    assert second_cache.capture().vault == {'phishing': '7'}


def test_admin_reset_reaches_device_once(make_device, store, timers):
    reloads = []
    cache, engine = make_device('team1', on_reload=reloads.append)
    cache.set_digit('binary', '4')
    cache.storage.set('phish_done_1', '1')
    timers.fire_all()

    store.reset_team('team1')
    assert engine.pull() is True
    assert cache.reset_version() == '1'
    assert cache.storage.get('lock_digit_binary') is None
    assert cache.storage.get('phish_done_1') is None
    assert cache.vault() == {'resetVersion': 1}
    timers.fire_all()
    assert reloads == ['team1']

    assert engine.pull() is True
    assert timers.pending() == []
    assert reloads == ['team1']


def test_triggers_never_raise(settings, timers, caplog):
    def handler(request):
        raise httpx.InvalidURL('unusable url')

    client = TeamStateClient('http://testserver', transport=httpx.MockTransport(handler))
    cache = LocalCache('team1', MemoryStorage())
    engine = StateSync('team1', cache, client, settings=settings, timer_factory=timers)

    engine.handle_visibility(hidden=False)
    engine.handle_online()
    engine.handle_unload()
    assert not engine.busy
    assert 'crashed' in caplog.text


class GatedStorage(MemoryStorage):
    """Blocks the first write of one key until released."""

    def __init__(self, initial, gated_key):
        super().__init__(initial)
        self.gated_key = gated_key
        self.entered = threading.Event()
        self.release = threading.Event()

    def set(self, key, value):
        if key == self.gated_key and not self.entered.is_set():
            self.entered.set()
            self.release.wait(5)
        super().set(key, value)


def test_push_during_pull_uploads_a_consistent_snapshot(settings, timers):
    storage = GatedStorage({'team1_score': '90'}, gated_key='team1_score')
    fake = FakeRemote(state={'progress': {'phishing': True}, 'score': 10})
    cache, engine = _engine(fake, settings, timers, storage=storage)

    puller = threading.Thread(target=engine.pull)
    puller.start()
    assert storage.entered.wait(5)

    pusher = threading.Thread(target=engine.save_now, args=('manual',))
    pusher.start()
    # the snapshot waits for the merge in progress
    pusher.join(0.2)
    assert pusher.is_alive()

    storage.release.set()
    puller.join(5)
    pusher.join(5)

    pushed = fake.puts()
    assert len(pushed) == 1
    assert (pushed[0]['progress']['phishing'], pushed[0]['score']) == (True, 10)
    assert cache.score() == 10
