import logging
import threading
import time
from typing import Callable, Optional

import httpx

from vaultsync.client.cache import LocalCache
from vaultsync.client.remote import RemoteStoreError, TeamStateClient
from vaultsync.config import SyncSettings

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (httpx.HTTPError, RemoteStoreError)


class StateSync:
    """Keeps one team's :class:`LocalCache` in step with the remote store.

    - pulls on start, every ``pull_interval_sec``, when the client comes back
      online and when it becomes visible again
    - pushes after a debounce window following any local mutation, when the
      client is hidden and on unload
    - only one push is ever in flight; a push requested meanwhile takes the
      single pending slot and is re-queued through the debounce once the
      current one finishes
    - a pull that carries a new vault reset version wipes local puzzle state
      and schedules ``on_reload`` shortly afterwards

    Failures are logged and the cycle is dropped; the next trigger retries.

    With ``close_client`` the engine owns ``client`` and closes it in
    :meth:`stop`; such an engine is not restarted afterwards.
    """

    def __init__(self, team: str, cache: LocalCache, client: TeamStateClient,
                 settings: Optional[SyncSettings] = None,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer,
                 on_reload: Optional[Callable[[str], None]] = None,
                 on_ready: Optional[Callable[[str], None]] = None,
                 close_client: bool = False):
        self.team = str(team).strip().lower()
        self.cache = cache
        self.client = client
        self.settings = settings or SyncSettings()
        self.on_reload = on_reload
        self.on_ready = on_ready
        self._close_client = close_client
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._busy = False
        self._pending: Optional[str] = None
        self._debounce = None
        self._reload_timer = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self.last_pull = 0.0
        self.last_push = 0.0
        self.cache.subscribe(self.queue_save)

    # ---- lifecycle ----

    def start(self) -> None:
        """Initial pull, then the periodic pull loop on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        if self._closed:
            self._closed = False
            self.cache.subscribe(self.queue_save)
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f'state-sync-{self.team}', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        with self._lock:
            self._closed = True
            for timer in (self._debounce, self._reload_timer):
                if timer is not None:
                    timer.cancel()
            self._debounce = None
            self._reload_timer = None
        self.cache.unsubscribe(self.queue_save)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        if self._close_client:
            self.client.close()

    @property
    def busy(self) -> bool:
        return self._busy

    def _run(self) -> None:
        self._guard(self.pull, True)
        while not self._stop.wait(self.settings.pull_interval_sec):
            self._guard(self.pull)

    def _guard(self, fn, *args) -> None:
        # Scheduled callbacks must never take the thread down
        try:
            fn(*args)
        except Exception:
            logger.exception(f"[state-sync] {getattr(fn, '__name__', fn)} crashed team={self.team}")

    # ---- pull ----

    def request_pull(self) -> bool:
        return self.pull()

    def pull(self, initial: bool = False) -> bool:
        try:
            state = self.client.get_team_state(self.team)
        except _TRANSIENT_ERRORS as exc:
            logger.warning(f"[state-sync] pull failed team={self.team}: {exc}")
            return False
        wiped = self.cache.apply_remote(state)
        self.last_pull = time.time()
        if wiped:
            self._schedule_reload()
        if initial and self.on_ready is not None:
            self.on_ready(self.team)
        return True

    def _schedule_reload(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._reload_timer is not None:
                self._reload_timer.cancel()
            timer = self._timer_factory(self.settings.reload_delay_ms / 1000.0, self._guard, args=(self._reload,))
            timer.daemon = True
            self._reload_timer = timer
        timer.start()

    def _reload(self) -> None:
        with self._lock:
            self._reload_timer = None
        logger.info(f"[state-sync] reloading after reset team={self.team}")
        if self.on_reload is not None:
            self.on_reload(self.team)
        else:
            self.pull(initial=True)

    # ---- push ----

    def queue_save(self, reason: str = 'auto') -> None:
        """Restart the debounce window; the push fires when it elapses."""
        with self._lock:
            if self._closed:
                return
            if self._debounce is not None:
                self._debounce.cancel()
            timer = self._timer_factory(self.settings.debounce_ms / 1000.0, self._guard, args=(self._fire_push, reason))
            timer.daemon = True
            self._debounce = timer
        timer.start()

    def _fire_push(self, reason: str) -> None:
        with self._lock:
            self._debounce = None
        self.push(reason)

    def save_now(self, reason: str = 'manual') -> bool:
        with self._lock:
            if self._debounce is not None:
                self._debounce.cancel()
                self._debounce = None
        return self.push(reason)

    def push(self, reason: str = 'auto') -> bool:
        with self._lock:
            if self._busy:
                self._pending = reason
                return False
            self._busy = True
        pushed = False
        try:
            record = self.cache.capture()
            self.client.put_team_state(record, reason)
            self.last_push = time.time()
            pushed = True
        except _TRANSIENT_ERRORS as exc:
            logger.warning(f"[state-sync] push failed team={self.team} reason={reason}: {exc}")
        finally:
            with self._lock:
                self._busy = False
                pending, self._pending = self._pending, None
            if pending:
                self.queue_save(pending)
        return pushed

    # ---- external triggers ----

    def handle_visibility(self, hidden: bool) -> None:
        if hidden:
            self._guard(self.queue_save, 'visibility')
        else:
            self._guard(self.request_pull)

    def handle_online(self) -> None:
        self._guard(self.request_pull)
        self._guard(self.queue_save, 'online')

    def handle_unload(self) -> None:
        if self._busy:
            return
        self._guard(self.save_now, 'unload')
