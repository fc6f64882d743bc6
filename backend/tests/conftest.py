import os
import sys
import pytest
import httpx

# Ensure the backend root (containing the `vaultsync` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from vaultsync import create_app, db
from vaultsync.client import LocalCache, MemoryStorage, StateSync, TeamStateClient
from vaultsync.config import SyncSettings


class TestConfig:
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = False
    CORS_ORIGINS = []
    SEED_TEAMS = ['team1', 'team2']
    MAX_TEAM_LENGTH = 120


class ManualTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.function(*self.args, **self.kwargs)


class ManualTimers:
    def __init__(self):
        self.created = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        self.created.append(timer)
        return timer

    def pending(self):
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]

    def fire_all(self):
        fired = 0
        while self.pending():
            for timer in self.pending():
                timer.fire()
                fired += 1
        return fired


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import vaultsync.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def store(flask_app):
    from vaultsync.services.state.store import TeamStateStore
    return TeamStateStore.from_app(flask_app)


@pytest.fixture()
def timers():
    return ManualTimers()


@pytest.fixture()
def settings():
    return SyncSettings(base_url='http://testserver', pull_interval_sec=60, debounce_ms=1200,
                        request_timeout_sec=2, reload_delay_ms=120)


@pytest.fixture()
def remote(flask_app):
    """HTTP client talking to the test app in-process."""
    remote_client = TeamStateClient('http://testserver', timeout=2,
                                    transport=httpx.WSGITransport(app=flask_app))
    yield remote_client
    remote_client.close()


@pytest.fixture()
def make_device(remote, settings, timers):
    """Build a (cache, engine) pair for one team on its own local storage."""
    engines = []

    def _make(team='team1', storage=None, **kwargs):
        cache = LocalCache(team, storage if storage is not None else MemoryStorage())
        engine = StateSync(team, cache, remote, settings=settings, timer_factory=timers, **kwargs)
        engines.append(engine)
        return cache, engine

    yield _make
    for engine in engines:
        engine.stop(timeout=1)
