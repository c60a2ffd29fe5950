"""
Background Sync Manager - Multi-request Strava sync jobs with pollable progress

A sync first fetches the athlete's activity index as a priority request, then
queues one detail request per activity. Progress is persisted after every change
under the task id so that any process can poll it. A failing activity is recorded
in the task's error list; only a failed index fetch fails the whole task.
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from src.api.errors import NotFound
from src.config import (
    SYNC_DEFAULT_LIMIT,
    SYNC_GROUP_SIZE,
    SYNC_GROUP_PAUSE,
    SYNC_TASK_TTL,
    SYNC_MAX_RECORDED_ERRORS
)
from src.models.models import (
    SyncTask,
    SYNC_PENDING,
    SYNC_RUNNING,
    SYNC_COMPLETED,
    SYNC_FAILED
)
from src.utils.helpers import chunked

logger = logging.getLogger(__name__)


class BackgroundSyncManager:
    """Runs activity syncs through the request queue and tracks their progress"""

    TASK_KEY_PREFIX = "strava_sync_"

    # Group size used by batch_sync_activities
    BATCH_GROUP_SIZE = 10

    def __init__(self, queue, store, client,
                 task_ttl: int = SYNC_TASK_TTL,
                 default_limit: int = SYNC_DEFAULT_LIMIT,
                 group_size: int = SYNC_GROUP_SIZE,
                 group_pause: float = SYNC_GROUP_PAUSE,
                 max_recorded_errors: int = SYNC_MAX_RECORDED_ERRORS,
                 activity_handler: Optional[Callable[[str, Any], None]] = None,
                 executor: Optional[Executor] = None,
                 sleep: Optional[Callable[[float], Any]] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the manager

        Args:
            queue: RequestQueue used for every call
            store: StateStore holding task snapshots
            client: StravaClient used to build request specs
            task_ttl: Seconds a task snapshot stays pollable after its last update
            default_limit: Activities fetched when options give no limit
            group_size: Detail requests submitted per group
            group_pause: Seconds between two groups
            max_recorded_errors: Cap on stored unit errors per task
            activity_handler: Called with (owner_id, activity) for each fetched detail
            executor: Runs the unit feeder (defaults to a one-thread pool, created
                on first use and again after shutdown)
            sleep: Pause function (defaults to time.sleep)
            clock: Time source in epoch seconds (defaults to time.time)
        """
        self.queue = queue
        self.store = store
        self.client = client
        self.task_ttl = task_ttl
        self.default_limit = default_limit
        self.group_size = group_size
        self.group_pause = group_pause
        self.max_recorded_errors = max_recorded_errors
        self.activity_handler = activity_handler
        self._executor = executor
        self._owns_executor = executor is None
        self._sleep = sleep or time.sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._tasks: Dict[str, SyncTask] = {}

    def _now(self) -> float:
        return self._clock() if self._clock else time.time()

    def _key(self, task_id: str) -> str:
        return f"{self.TASK_KEY_PREFIX}{task_id}"

    def _new_task_id(self, owner_id: str) -> str:
        stamp = int(self._now() * 1000)
        task_id = f"sync_{owner_id}_{stamp}"
        while task_id in self._tasks or self.store.get(self._key(task_id)) is not None:
            stamp += 1
            task_id = f"sync_{owner_id}_{stamp}"
        return task_id

    def _feeder(self) -> Executor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strava-sync-feeder")
            return self._executor

    def _save(self, task: SyncTask, strict: bool = False) -> None:
        try:
            self.store.set(self._key(task.task_id), task.to_dict(), ttl=self.task_ttl)
        except (OSError, TypeError, ValueError):
            if strict:
                raise
            logger.error("Failed to persist sync task %s", task.task_id, exc_info=True)

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def start_background_sync(self, owner_id: str, credential: str,
                              options: Optional[Dict] = None) -> Dict:
        """
        Start syncing a user's recent activities in the background

        Args:
            owner_id: User the sync runs for
            credential: User's Strava access token
            options: {"limit": activities to fetch, "page": index page}

        Returns:
            {"task_id", "status", "message"}; the sync continues after returning

        Raises:
            ValueError: If the limit or page is not positive
            OSError: If the initial task record cannot be stored
        """
        options = dict(options or {})
        limit = options.get("limit")
        limit = self.default_limit if limit is None else int(limit)
        page = options.get("page")
        page = 1 if page is None else int(page)
        if limit <= 0 or page <= 0:
            raise ValueError("limit and page must be positive")

        with self._lock:
            task = SyncTask(
                task_id=self._new_task_id(owner_id),
                owner_id=owner_id,
                started_at=self._now(),
                options={"limit": limit, "page": page}
            )
            self._tasks[task.task_id] = task
            try:
                self._save(task, strict=True)
            except Exception:
                del self._tasks[task.task_id]
                raise

        spec = self.client.activities_request(credential, limit=limit, page=page)
        self.queue.submit(
            spec,
            owner_id,
            priority=True,
            on_complete=partial(self._on_index_fetched, task.task_id, credential),
            on_error=partial(self._on_index_failed, task.task_id)
        )
        logger.info("Background sync %s started for user %s (limit=%d)", task.task_id, owner_id, limit)

        return {
            "task_id": task.task_id,
            "status": SYNC_PENDING,
            "message": "Background sync started"
        }

    def get_sync_task_status(self, task_id: str) -> SyncTask:
        """
        Snapshot of a sync task

        Raises:
            NotFound: If the id is unknown or has expired
        """
        data = self.store.get(self._key(task_id))
        if data is None:
            raise NotFound(task_id)
        return SyncTask.from_dict(data)

    def active_task_ids(self) -> List[str]:
        with self._lock:
            return list(self._tasks)

    def batch_sync_activities(self, owner_id: str, credential: str, activity_ids: Iterable,
                              priority: bool = False) -> List[Any]:
        """
        Fetch a known list of activities, blocking until all are done

        Requests go out in groups of BATCH_GROUP_SIZE with a pause between groups.
        Requires the queue worker to be running.

        Returns:
            Activity payloads in the order of activity_ids

        Raises:
            ValueError: If no activity ids are given
            GovernorError: The first failure among the requests
        """
        activity_ids = list(activity_ids or [])
        if not activity_ids:
            raise ValueError("A list of activity ids is required")

        results = []
        for index, group in enumerate(chunked(activity_ids, self.BATCH_GROUP_SIZE)):
            if index:
                self._sleep(self.group_pause)
            futures = [
                self.queue.submit(self.client.activity_request(credential, activity_id),
                                  owner_id, priority=priority)
                for activity_id in group
            ]
            results.extend(f.result() for f in futures)
        return results

    def shutdown(self, wait: bool = False) -> None:
        """Stop the unit feeder; an owned pool is recreated by the next sync"""
        with self._lock:
            executor = self._executor
            if self._owns_executor:
                self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Queue callbacks (run on the queue worker)
    # -------------------------------------------------------------------------

    def _on_index_fetched(self, task_id: str, credential: str, activities: Any) -> None:
        if not isinstance(activities, list):
            self._on_index_failed(task_id, ValueError("Unexpected activity index payload"))
            return

        unit_refs = [str(a["id"]) for a in activities if isinstance(a, dict) and a.get("id") is not None]
        skipped = len(activities) - len(unit_refs)

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning("Index fetched for unknown sync task %s", task_id)
                return
            task.total_units = len(activities)
            task.transition(SYNC_RUNNING)
            for _ in range(skipped):
                task.record_unit(None, "Activity entry has no id", self.max_recorded_errors)
            if not unit_refs:
                task.progress_percent = 100
                task.finish(SYNC_COMPLETED, self._now())
                del self._tasks[task_id]
            self._save(task)
            owner_id = task.owner_id

        if skipped:
            logger.warning("Background sync %s: %d index entries have no id", task_id, skipped)
        if not unit_refs:
            logger.info("Background sync %s found no activities to fetch", task_id)
            return

        logger.info("Background sync %s running: %d activities", task_id, len(unit_refs))
        try:
            self._feeder().submit(self._feed_units, task_id, owner_id, credential, unit_refs)
        except RuntimeError as e:
            logger.exception("Could not start the activity feeder for sync task %s", task_id)
            for ref in unit_refs:
                self._record_unit(task_id, ref, f"Not queued: {e}")

    def _on_index_failed(self, task_id: str, error: Exception) -> None:
        with self._lock:
            task = self._tasks.pop(task_id, None)
            if task is None:
                logger.warning("Index failure for unknown sync task %s", task_id)
                return
            task.error = str(error)
            task.finish(SYNC_FAILED, self._now())
            self._save(task)
        logger.error("Background sync %s failed to fetch activities: %s", task_id, error)

    def _feed_units(self, task_id: str, owner_id: str, credential: str, unit_refs: List[str]) -> None:
        """Submit detail requests in groups (runs on the feeder thread)"""
        submitted = 0
        try:
            for index, group in enumerate(chunked(unit_refs, self.group_size)):
                if index:
                    self._sleep(self.group_pause)
                for ref in group:
                    self.queue.submit(
                        self.client.activity_request(credential, ref),
                        owner_id,
                        background=True,
                        on_complete=partial(self._on_unit_fetched, task_id, owner_id, ref),
                        on_error=partial(self._on_unit_failed, task_id, ref)
                    )
                    submitted += 1
        except Exception as e:
            logger.exception("Could not queue activities for sync task %s", task_id)
            for ref in unit_refs[submitted:]:
                self._record_unit(task_id, ref, f"Not queued: {e}")

    def _on_unit_fetched(self, task_id: str, owner_id: str, ref: str, activity: Any) -> None:
        message = None
        if self.activity_handler is not None:
            try:
                self.activity_handler(owner_id, activity)
            except Exception as e:
                logger.exception("Activity handler failed for %s", ref)
                message = f"Activity handler failed: {e}"
        self._record_unit(task_id, ref, message)

    def _on_unit_failed(self, task_id: str, ref: str, error: Exception) -> None:
        self._record_unit(task_id, ref, str(error))

    def _record_unit(self, task_id: str, ref: str, message: Optional[str]) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning("Unit %s finished for unknown sync task %s", ref, task_id)
                return
            task.record_unit(ref, message, self.max_recorded_errors)
            finished = task.completed_units >= task.total_units
            if finished:
                task.finish(SYNC_COMPLETED, self._now())
                del self._tasks[task_id]
            self._save(task)

        if finished:
            logger.info("Background sync %s completed: %d activities, %d errors",
                        task_id, task.completed_units, task.error_count)
