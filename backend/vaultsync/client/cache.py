"""Local-first mirror of one team's state.

Puzzle code reads and mutates the team record through :class:`LocalCache`;
the sync engine snapshots it with :meth:`LocalCache.capture` and merges
server state back with :meth:`LocalCache.apply_remote`.

Storage failures never reach the caller: a field that cannot be read comes
back as its default and a write that fails is logged and dropped.
"""

import copy
import json
import logging
import math
import re
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from vaultsync.schemas import StateRecord
from vaultsync.services.state.sanitize import (
    DEFAULT_SCORE,
    PUZZLES,
    coerce_number,
    default_progress,
    is_finite_number,
    round_half_up,
    sanitize_endless,
    sanitize_progress,
    truthy,
)

logger = logging.getLogger(__name__)

SCORE_LOG_LIMIT = 40

# Raw per-puzzle digit keys written by the puzzles themselves. The first key
# of each tuple is the one written back when a remote vault is applied.
RAW_DIGIT_KEYS = {
    'phishing': ('lock_digit_phishing_total',),
    'encryption': ('lock_digit_caesar_shift',),
    'password': ('lock_digit_pw_minutes', 'lock_digit_pw_clues'),
    'essential': ('lock_digit_essential',),
    'binary': ('lock_digit_binary',),
}

_STORAGE_ERRORS = (OSError, ValueError, TypeError)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _version_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class LocalCache:
    def __init__(self, team: str, storage):
        self.team = str(team).strip().lower()
        self.storage = storage
        self.keys = {
            'progress': f'{self.team}_progress',
            'progressMeta': f'{self.team}_progress_meta',
            'times': f'{self.team}_times',
            'score': f'{self.team}_score',
            'scoreLog': f'{self.team}_score_log',
            'activity': f'{self.team}_activity',
            'endless': f'{self.team}_endless_scores',
        }
        self.vault_key = f'{self.team}_vault'
        self.reset_version_key = f'{self.team}_reset_version'
        self._wipe_patterns = [
            re.compile(r'^phish_done_'),
            re.compile(r'^class_'),
            re.compile(rf'^{re.escape(self.team)}_phishing_'),
            re.compile(rf'^{re.escape(self.team)}_progress$'),
            re.compile(rf'^{re.escape(self.team)}_progress_meta$'),
        ]
        self._listeners: List[Callable[[str], None]] = []
        # Guards capture, apply_remote and every read-modify-write helper
        self._lock = threading.RLock()

    # ---- storage helpers ----

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.storage.get(key)
        except _STORAGE_ERRORS as exc:
            logger.debug(f"[state-sync] read failed key={key}: {exc}")
            return None

    def _write(self, key: str, value: str) -> None:
        try:
            self.storage.set(key, value)
        except _STORAGE_ERRORS as exc:
            logger.warning(f"[state-sync] write failed key={key}: {exc}")

    def _remove(self, key: str) -> None:
        try:
            self.storage.remove(key)
        except _STORAGE_ERRORS as exc:
            logger.warning(f"[state-sync] remove failed key={key}: {exc}")

    def _read_json(self, key: str, fallback: Any, expected: type) -> Any:
        raw = self._read(key)
        if not raw:
            return copy.deepcopy(fallback)
        try:
            value = json.loads(raw)
        except ValueError:
            return copy.deepcopy(fallback)
        return value if isinstance(value, expected) else copy.deepcopy(fallback)

    def _write_json(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning(f"[state-sync] cannot encode key={key}: {exc}")
            return
        self._write(key, encoded)

    # ---- change notification ----

    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[str], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _changed(self, reason: str) -> None:
        for listener in list(self._listeners):
            listener(reason)

    # ---- reads ----

    def progress(self) -> Dict[str, Any]:
        return self._read_json(self.keys['progress'], default_progress(), dict)

    def progress_meta(self) -> Dict[str, Any]:
        return self._read_json(self.keys['progressMeta'], {}, dict)

    def progress_percent(self, puzzle: str) -> int:
        entry = self.progress_meta().get(puzzle)
        if isinstance(entry, dict) and is_finite_number(entry.get('percent')):
            return entry['percent']
        return 0

    def times(self) -> List[Any]:
        return self._read_json(self.keys['times'], [], list)

    def score(self) -> int:
        raw = self._read(self.keys['score'])
        if raw is None:
            return DEFAULT_SCORE
        value = coerce_number(raw)
        if not math.isfinite(value):
            return DEFAULT_SCORE
        return max(0, int(math.floor(value)))

    def score_log(self) -> List[Any]:
        return self._read_json(self.keys['scoreLog'], [], list)

    def activity(self) -> List[Any]:
        return self._read_json(self.keys['activity'], [], list)

    def endless_scores(self) -> List[Any]:
        return self._read_json(self.keys['endless'], [], list)

    def vault(self) -> Dict[str, Any]:
        return self._read_json(self.vault_key, {}, dict)

    def reset_version(self) -> Optional[str]:
        return self._read(self.reset_version_key)

    def _raw_digit(self, puzzle: str) -> Optional[str]:
        for key in RAW_DIGIT_KEYS[puzzle]:
            value = self._read(key)
            if value:
                return value
        return None

    def collect_vault(self) -> Dict[str, Any]:
        """Stored vault map with any raw digits layered on top."""
        vault = self.vault()
        for puzzle in RAW_DIGIT_KEYS:
            value = self._raw_digit(puzzle)
            if value is not None:
                vault[puzzle] = value
        return vault

    # ---- sync boundary ----

    def capture(self) -> StateRecord:
        """Snapshot the local record for upload. Never raises."""
        with self._lock:
            vault = self.collect_vault()
            if vault:
                self._write_json(self.vault_key, vault)
            payload = {
                'progress': self.progress(),
                'progressMeta': self.progress_meta(),
                'times': self.times(),
                'score': self.score(),
                'scoreLog': self.score_log(),
                'activity': self.activity(),
                'vault': vault,
            }
        try:
            return StateRecord.from_payload(self.team, payload)
        except ValidationError as exc:
            logger.warning(f"[state-sync] capture fell back to defaults: {exc}")
            return StateRecord(team=self.team)

    def apply_remote(self, state: Any) -> bool:
        """Merge a remote record into local storage.

        Only fields of the expected type are written, so a malformed remote
        payload leaves the matching local field alone. Returns True when the
        remote vault carried a new reset version and local puzzle state was
        wiped; the caller is expected to reload shortly after.
        """
        if not isinstance(state, dict):
            return False
        with self._lock:
            return self._apply_remote(state)

    def _apply_remote(self, state: Dict[str, Any]) -> bool:
        vault = state.get('vault')
        wiped = False
        if isinstance(vault, dict):
            remote_reset = vault.get('resetVersion')
            if truthy(remote_reset) and _version_text(remote_reset) != self.reset_version():
                self.clear_puzzle_state()
                self._write(self.reset_version_key, _version_text(remote_reset))
                wiped = True
                logger.info(f"[state-sync] reset version {_version_text(remote_reset)} applied team={self.team}")

        self._write_json(self.keys['progress'], sanitize_progress(state.get('progress')))
        if isinstance(state.get('progressMeta'), dict):
            self._write_json(self.keys['progressMeta'], state['progressMeta'])
        if isinstance(state.get('times'), list):
            self._write_json(self.keys['times'], state['times'])
        if is_finite_number(state.get('score')):
            self._write(self.keys['score'], str(max(0, round_half_up(state['score']))))
        if isinstance(state.get('scoreLog'), list):
            self._write_json(self.keys['scoreLog'], state['scoreLog'])
        if isinstance(state.get('activity'), list):
            self._write_json(self.keys['activity'], state['activity'])
        if isinstance(vault, dict):
            self._write_json(self.vault_key, vault)
            self._expand_vault(vault)
        return wiped

    def _expand_vault(self, vault: Dict[str, Any]) -> None:
        for puzzle, keys in RAW_DIGIT_KEYS.items():
            value = vault.get(puzzle)
            if truthy(value):
                self._write(keys[0], str(value))

    def clear_puzzle_state(self) -> None:
        """Drop every puzzle artifact, the vault mirror and the reset marker."""
        with self._lock:
            for keys in RAW_DIGIT_KEYS.values():
                for key in keys:
                    self._remove(key)
            try:
                stored = self.storage.keys()
            except _STORAGE_ERRORS as exc:
                logger.warning(f"[state-sync] cannot list keys: {exc}")
                stored = []
            for key in stored:
                if any(pattern.search(key) for pattern in self._wipe_patterns):
                    self._remove(key)
            self._remove(self.vault_key)
            self._remove(self.reset_version_key)

    # ---- collaborator mutations ----

    def set_progress_flag(self, puzzle: str, value: bool) -> Dict[str, Any]:
        with self._lock:
            progress = self.progress()
            progress[puzzle] = bool(value)
            self._write_json(self.keys['progress'], progress)
        self._changed('progress')
        return progress

    def set_progress_percent(self, puzzle: str, percent: Any, complete: Optional[bool] = None) -> Dict[str, int]:
        value = coerce_number(percent)
        clamped = max(0, min(100, round_half_up(value))) if math.isfinite(value) else 0
        with self._lock:
            meta = self.progress_meta()
            meta[puzzle] = {'percent': clamped, 'updatedAt': _now_ms()}
            self._write_json(self.keys['progressMeta'], meta)
            if isinstance(complete, bool):
                progress = self.progress()
                progress[puzzle] = complete
                self._write_json(self.keys['progress'], progress)
        self._changed('progress')
        return meta[puzzle]

    def push_time(self, seconds: Any) -> List[Any]:
        value = coerce_number(seconds)
        with self._lock:
            times = self.times()
            times.append(value if math.isfinite(value) else 0)
            self._write_json(self.keys['times'], times)
        self._changed('times')
        return times

    def _append_score_log(self, entry: Dict[str, Any]) -> None:
        log = self.score_log()
        log.append(entry)
        self._write_json(self.keys['scoreLog'], log[-SCORE_LOG_LIMIT:])

    def adjust_score(self, delta: int, reason: str = 'adjust') -> int:
        with self._lock:
            current = self.score()
            updated = max(0, round_half_up(current + delta)) if delta else current
            if updated != current:
                self._write(self.keys['score'], str(updated))
            self._append_score_log({'delta': delta or 0, 'total': updated, 'reason': reason, 'at': _now_ms()})
        self._changed('score')
        return updated

    def set_score(self, value: Any, reason: str = 'set') -> int:
        number = coerce_number(value)
        clamped = max(0, round_half_up(number)) if math.isfinite(number) else DEFAULT_SCORE
        with self._lock:
            self._write(self.keys['score'], str(clamped))
            self._append_score_log({'delta': 0, 'total': clamped, 'reason': reason, 'at': _now_ms()})
        self._changed('score')
        return clamped

    def log_activity(self, type: str, detail: str = '', **fields: Any) -> Dict[str, Any]:
        entry = {
            'type': type,
            'detail': detail,
            'puzzle': fields.get('puzzle'),
            'status': fields.get('status'),
            'delta': fields.get('delta'),
            'total': fields.get('total'),
            'reason': fields.get('reason'),
            'at': _now_ms(),
        }
        with self._lock:
            feed = self.activity()
            feed.append(entry)
            self._write_json(self.keys['activity'], feed)
        self._changed('activity')
        return entry

    def set_digit(self, puzzle: str, value: Any) -> Dict[str, Any]:
        """Record a collected vault digit for one puzzle."""
        if puzzle not in RAW_DIGIT_KEYS:
            raise ValueError(f'Unknown puzzle: {puzzle}')
        with self._lock:
            self._write(RAW_DIGIT_KEYS[puzzle][0], str(value))
            vault = self.vault()
            vault[puzzle] = value
            self._write_json(self.vault_key, vault)
        self._changed('vault')
        return vault

    def record_endless_score(self, name: str, score: int, level: int) -> List[Dict[str, Any]]:
        entry = {
            'name': name,
            'score': score,
            'level': level,
            'at': _now_ms(),
        }
        with self._lock:
            board = sanitize_endless(self.endless_scores() + [entry])
            self._write_json(self.keys['endless'], board)
        self._changed('endless')
        return board

    def is_complete(self) -> bool:
        """True once every puzzle has a vault digit."""
        with self._lock:
            vault = self.collect_vault()
        return all(truthy(vault.get(puzzle)) for puzzle in PUZZLES)
