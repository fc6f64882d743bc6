"""String key/value stores backing the local team cache.

Both stores hold plain strings, like browser local storage; the cache layer
owns the JSON encoding of individual values.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


class JsonFileStorage(MemoryStorage):
    """Durable store: the whole map is one JSON document on disk.

    Every write replaces the file atomically. A missing file starts empty; a
    corrupt one is logged and treated as empty so callers keep working.
    """

    def __init__(self, path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning(f"[state-sync] cannot read {self.path}: {exc}")
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"[state-sync] corrupt local store {self.path}, starting empty")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix='.vaultsync-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(self._data, handle)
            os.replace(tmp, self.path)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()
