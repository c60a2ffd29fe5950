"""
State Store - Persistent key-value storage with TTL, backed by a JSON file
"""

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class StateStore:
    """Key-value store that survives process restarts"""

    STATE_FILENAME = "governor_state.json"

    def __init__(self, data_dir: str = "data", clock: Optional[Callable[[], float]] = None):
        """
        Initialize StateStore

        Args:
            data_dir: Directory holding the state file
            clock: Time source in epoch seconds (defaults to time.time)
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_file = self.data_dir / self.STATE_FILENAME
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict] = self._load()

    def _now(self) -> float:
        return self._clock() if self._clock else time.time()

    def _load(self) -> Dict[str, Dict]:
        """Load entries from disk, starting empty if the file is missing or corrupt"""
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Could not read state file %s, starting empty: %s", self.state_file, e)
            return {}
        if not isinstance(data, dict):
            logger.error("State file %s does not hold an object, starting empty", self.state_file)
            return {}
        return data

    def _flush(self) -> None:
        """Write all entries atomically (temp file + rename)"""
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".state-", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self._entries, f, indent=2)
            os.replace(tmp_path, self.state_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _is_expired(self, entry: Dict) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and self._now() >= expires_at

    def _drop_expired(self) -> int:
        expired = [k for k, e in self._entries.items() if self._is_expired(e)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value

        Args:
            key: Entry key
            default: Returned when the key is missing or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if self._is_expired(entry):
                del self._entries[key]
                return default
            return entry.get("value", default)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value and persist it immediately

        Expired entries are dropped from the file on the same write.

        Args:
            key: Entry key
            value: JSON-serializable value
            ttl: Seconds until the entry expires (None keeps it forever)

        Raises:
            OSError: If the state file cannot be written
            TypeError: If the value is not JSON-serializable
        """
        with self._lock:
            expires_at = self._now() + ttl if ttl is not None else None
            previous = self._entries.get(key)
            self._entries[key] = {"value": value, "expires_at": expires_at}
            dropped = self._drop_expired()
            try:
                self._flush()
            except (OSError, TypeError, ValueError):
                # keep memory consistent with what is on disk
                if previous is None:
                    del self._entries[key]
                else:
                    self._entries[key] = previous
                raise
            if dropped:
                logger.debug("Dropped %d expired state entries", dropped)

    def delete(self, key: str) -> bool:
        """Remove a key; returns True if it existed"""
        with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            self._flush()
            return True

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        with self._lock:
            removed = self._drop_expired()
            if removed:
                self._flush()
            return removed

    def keys(self, prefix: str = "") -> list:
        """Live keys starting with prefix"""
        with self._lock:
            return [k for k, e in self._entries.items()
                    if k.startswith(prefix) and not self._is_expired(e)]
