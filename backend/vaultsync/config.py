import os
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_connection_string(raw):
    """Clean up a pasted Postgres connection string and require TLS.

    Accepts values copied straight out of a provider console (a leading
    ``psql`` and surrounding quotes are stripped). Non-postgres URLs such as
    ``sqlite://`` are returned untouched.
    """
    if not raw:
        return raw
    trimmed = raw.strip()
    if trimmed.startswith('psql '):
        trimmed = trimmed[5:].strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ('"', "'"):
        trimmed = trimmed[1:-1]
    lowered = trimmed.lower()
    if not (lowered.startswith('postgres://') or lowered.startswith('postgresql://')):
        return trimmed
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return trimmed
    # SQLAlchemy only understands the postgresql:// scheme
    scheme = 'postgresql'
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if query.get('channel_binding') == 'require':
        query['channel_binding'] = 'prefer'
    query.setdefault('sslmode', 'require')
    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _split_csv(value):
    return [item.strip() for item in (value or '').split(',') if item.strip()]


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SQLALCHEMY_DATABASE_URI = normalize_connection_string(
        os.environ.get('DATABASE_URL') or os.environ.get('NEON_DATABASE_URL')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Create the team_state table on startup (migrations remain the source of truth)
    AUTO_CREATE_TABLES = _env_flag('AUTO_CREATE_TABLES', True)
    CORS_ORIGINS = _split_csv(os.environ.get('CORS_ORIGINS')) or [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8888",
    ]
    # Teams created by `flask db-reset`
    SEED_TEAMS = _split_csv(os.environ.get('SEED_TEAMS')) or ['team1', 'team2', 'team3', 'team4']
    # Longest accepted team identifier
    MAX_TEAM_LENGTH = int(os.environ.get('MAX_TEAM_LENGTH', '120'))


@dataclass
class SyncSettings:
    """Knobs for a client-side :class:`~vaultsync.client.engine.StateSync`."""

    base_url: str = 'http://localhost:5000'
    pull_interval_sec: float = 10.0
    debounce_ms: int = 1200
    request_timeout_sec: float = 5.0
    reload_delay_ms: int = 120

    @classmethod
    def from_env(cls):
        return cls(
            base_url=os.environ.get('SYNC_BASE_URL', cls.base_url),
            pull_interval_sec=float(os.environ.get('SYNC_PULL_INTERVAL_SEC', cls.pull_interval_sec)),
            debounce_ms=int(os.environ.get('SYNC_DEBOUNCE_MS', cls.debounce_ms)),
            request_timeout_sec=float(os.environ.get('SYNC_REQUEST_TIMEOUT_SEC', cls.request_timeout_sec)),
            reload_delay_ms=int(os.environ.get('SYNC_RELOAD_DELAY_MS', cls.reload_delay_ms)),
        )
