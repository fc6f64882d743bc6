"""Client side of team state sync: local cache, HTTP client and engine."""

from vaultsync.client.cache import LocalCache
from vaultsync.client.engine import StateSync
from vaultsync.client.remote import RemoteStoreError, TeamStateClient
from vaultsync.client.storage import JsonFileStorage, MemoryStorage
from vaultsync.config import SyncSettings


def create_sync(team, storage, settings=None, transport=None, **engine_kwargs):
    """Wire a cache, an HTTP client and a :class:`StateSync` for one team.

    The engine owns the client it is given here and closes it on ``stop()``.
    """
    settings = settings or SyncSettings.from_env()
    cache = LocalCache(team, storage)
    client = TeamStateClient(settings.base_url, timeout=settings.request_timeout_sec, transport=transport)
    engine_kwargs.setdefault('close_client', True)
    return StateSync(team, cache, client, settings=settings, **engine_kwargs)


__all__ = [
    'JsonFileStorage',
    'LocalCache',
    'MemoryStorage',
    'RemoteStoreError',
    'StateSync',
    'SyncSettings',
    'TeamStateClient',
    'create_sync',
]
