"""
Data models for the Strava request governor
"""

import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class RequestSpec:
    """An outbound Strava call, opaque to the queue"""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    json_body: Optional[Dict] = None

    @property
    def endpoint(self) -> str:
        """URL without query string, used for logging"""
        return self.url.split("?", 1)[0]

    def to_dict(self) -> Dict:
        """Convert to dictionary (without credentials)"""
        return {
            "url": self.url,
            "method": self.method,
            "params": dict(self.params),
            "json_body": self.json_body
        }


@dataclass
class DispatchOutcome:
    """Result of sending one RequestSpec through the transport"""
    status_code: Optional[int]  # None when no response was received
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass
class QueueItem:
    """One pending unit of work in the request queue"""
    request_spec: RequestSpec
    owner_id: str
    priority: bool = False
    max_retries: int = 3
    background: bool = False
    retry_count: int = 0
    enqueued_at: float = field(default_factory=time.time)
    completion: Future = field(default_factory=Future)
    on_complete: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None

    @property
    def attempts(self) -> int:
        """Dispatches made so far, assuming the current one has happened"""
        return self.retry_count + 1

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries


@dataclass
class UsageCounters:
    """Calls consumed in the short-term and long-term windows"""
    short_term_count: int = 0
    short_term_window_start: float = 0.0
    long_term_count: int = 0
    long_term_window_start: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "short_term_count": self.short_term_count,
            "short_term_window_start": self.short_term_window_start,
            "long_term_count": self.long_term_count,
            "long_term_window_start": self.long_term_window_start
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'UsageCounters':
        """Create UsageCounters from dictionary"""
        return cls(
            short_term_count=int(data.get("short_term_count", 0)),
            short_term_window_start=float(data.get("short_term_window_start", 0.0)),
            long_term_count=int(data.get("long_term_count", 0)),
            long_term_window_start=float(data.get("long_term_window_start", 0.0))
        )


# Sync task lifecycle states
SYNC_PENDING = "pending"
SYNC_RUNNING = "running"
SYNC_COMPLETED = "completed"
SYNC_FAILED = "failed"

# Allowed forward moves; anything else is a programming error
SYNC_TRANSITIONS = {
    SYNC_PENDING: {SYNC_RUNNING, SYNC_FAILED},
    SYNC_RUNNING: {SYNC_COMPLETED, SYNC_FAILED},
    SYNC_COMPLETED: set(),
    SYNC_FAILED: set(),
}


@dataclass
class SyncTask:
    """A background sync job, polled by the dashboard"""
    task_id: str
    owner_id: str
    status: str = SYNC_PENDING
    progress_percent: int = 0
    total_units: int = 0
    completed_units: int = 0
    errors: List[Dict] = field(default_factory=list)
    error_count: int = 0
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    duration_ms: Optional[int] = None
    options: Dict = field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        return self.status in (SYNC_COMPLETED, SYNC_FAILED)

    def transition(self, status: str) -> None:
        """
        Move to a new status

        Raises:
            ValueError: If the move goes backward or skips the lifecycle
        """
        if status not in SYNC_TRANSITIONS.get(self.status, set()):
            raise ValueError(f"Illegal sync task transition {self.status} -> {status}")
        self.status = status

    def record_unit(self, unit_ref: Optional[str] = None, message: Optional[str] = None,
                    max_errors: int = 100) -> None:
        """
        Count one finished unit, recording its error if it failed

        Args:
            unit_ref: Identifier of the unit (activity id)
            message: Error message, None on success
            max_errors: Cap on stored error entries
        """
        self.completed_units += 1
        if message is not None:
            self.error_count += 1
            if len(self.errors) < max_errors:
                self.errors.append({"unit_ref": unit_ref, "message": message})
        if self.total_units:
            self.progress_percent = round(self.completed_units / self.total_units * 100)

    def finish(self, status: str, now: Optional[float] = None) -> None:
        """Stamp the end of the task"""
        self.transition(status)
        self.ended_at = now if now is not None else time.time()
        self.duration_ms = int((self.ended_at - self.started_at) * 1000)

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "task_id": self.task_id,
            "owner_id": self.owner_id,
            "status": self.status,
            "progress_percent": self.progress_percent,
            "total_units": self.total_units,
            "completed_units": self.completed_units,
            "errors": [dict(e) for e in self.errors],
            "error_count": self.error_count,
            "error": self.error,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "options": dict(self.options)
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SyncTask':
        """Create SyncTask from dictionary"""
        return cls(
            task_id=data["task_id"],
            owner_id=data["owner_id"],
            status=data.get("status", SYNC_PENDING),
            progress_percent=data.get("progress_percent", 0),
            total_units=data.get("total_units", 0),
            completed_units=data.get("completed_units", 0),
            errors=list(data.get("errors", [])),
            error_count=data.get("error_count", 0),
            error=data.get("error"),
            started_at=data.get("started_at", 0.0),
            ended_at=data.get("ended_at"),
            duration_ms=data.get("duration_ms"),
            options=dict(data.get("options", {}))
        )
