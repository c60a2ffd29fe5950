"""
Call Log - One record per attempted Strava dispatch, for observability
"""

import json
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

from src.config import CALL_LOG_RECENT_SIZE

logger = logging.getLogger(__name__)


class CallLog:
    """Append-only sink for API call records

    Records are appended as JSON lines when a data directory is given and are
    kept in a bounded in-memory ring for the dashboard. The governor never reads
    them back.
    """

    CALL_LOG_FILENAME = "api_calls.jsonl"

    def __init__(self, data_dir: Optional[str] = None, recent_size: int = CALL_LOG_RECENT_SIZE):
        self.log_file = None
        if data_dir is not None:
            Path(data_dir).mkdir(parents=True, exist_ok=True)
            self.log_file = Path(data_dir) / self.CALL_LOG_FILENAME
        self._recent = deque(maxlen=recent_size)
        self._lock = threading.Lock()

    def emit(self, record: Dict) -> None:
        """
        Record one call

        Expected keys: api, endpoint, method, status_code, response_time_ms,
        owner_id and, for failures, error. Write failures are logged and swallowed
        so that observability never breaks a dispatch.
        """
        entry = dict(record)
        entry.setdefault("timestamp", time.time())
        with self._lock:
            self._recent.append(entry)
            if self.log_file is None:
                return
            try:
                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(entry, default=str) + "\n")
            except OSError as e:
                logger.error("Could not append to call log %s: %s", self.log_file, e)

    def recent(self, limit: int = 50) -> List[Dict]:
        """Most recent records, newest first"""
        with self._lock:
            items = list(self._recent)
        return list(reversed(items))[:limit]
