"""
Strava Governor - The single entry point for Strava calls

Create one governor per Strava application at startup and hand it to whatever
needs Strava data. It wires the state store, usage tracker, call log, transport,
request queue and background sync manager together.
"""

import logging
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional

from src.api.strava_client import StravaClient
from src.config import GovernorSettings
from src.models.models import RequestSpec, SyncTask
from src.services.call_log import CallLog
from src.services.request_queue import RequestQueue
from src.services.state_store import StateStore
from src.services.sync_manager import BackgroundSyncManager
from src.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)


class StravaGovernor:
    """Rate-limited gateway to the Strava API"""

    def __init__(self, store: StateStore, tracker: UsageTracker, queue: RequestQueue,
                 sync_manager: BackgroundSyncManager, client: StravaClient,
                 call_log: Optional[CallLog] = None):
        self.store = store
        self.tracker = tracker
        self.queue = queue
        self.sync_manager = sync_manager
        self.client = client
        self.call_log = call_log

    @classmethod
    def from_settings(cls, settings: Optional[GovernorSettings] = None, transport=None,
                      activity_handler: Optional[Callable[[str, Any], None]] = None) -> 'StravaGovernor':
        """
        Build a governor from settings

        Args:
            settings: Runtime settings (defaults to GovernorSettings())
            transport: Object with send(RequestSpec); defaults to the StravaClient
            activity_handler: Receives (owner_id, activity) for each synced activity
        """
        settings = settings or GovernorSettings()
        client = StravaClient(base_url=settings.base_url, timeout=settings.request_timeout)
        store = StateStore(settings.state_dir)
        call_log = CallLog(settings.state_dir)
        tracker = UsageTracker(
            store,
            short_term_limit=settings.short_term_limit,
            short_term_seconds=settings.short_term_seconds,
            long_term_limit=settings.long_term_limit,
            long_term_seconds=settings.long_term_seconds
        )
        queue = RequestQueue(
            transport or client,
            tracker,
            call_log=call_log,
            bucket_size=settings.bucket_size,
            cooling_period=settings.cooling_period,
            inter_request_delay=settings.inter_request_delay,
            tick_interval=settings.tick_interval,
            default_max_retries=settings.max_retries
        )
        sync_manager = BackgroundSyncManager(
            queue,
            store,
            client,
            task_ttl=settings.sync_task_ttl,
            default_limit=settings.sync_default_limit,
            group_size=settings.sync_group_size,
            group_pause=settings.sync_group_pause,
            activity_handler=activity_handler
        )
        return cls(store, tracker, queue, sync_manager, client, call_log)

    def start(self) -> 'StravaGovernor':
        self.queue.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self.queue.stop(timeout)
        self.sync_manager.shutdown()

    def enqueue(self, request_spec: RequestSpec, owner_id: str, priority: bool = False) -> Any:
        """Queue one call and wait for its payload (raises the failure kind)"""
        return self.queue.enqueue(request_spec, owner_id, priority=priority)

    def submit(self, request_spec: RequestSpec, owner_id: str, priority: bool = False, **kwargs) -> Future:
        """Queue one call and return a Future"""
        return self.queue.submit(request_spec, owner_id, priority=priority, **kwargs)

    def start_background_sync(self, owner_id: str, credential: str, options: Optional[Dict] = None) -> Dict:
        return self.sync_manager.start_background_sync(owner_id, credential, options)

    def get_sync_task_status(self, task_id: str) -> SyncTask:
        return self.sync_manager.get_sync_task_status(task_id)

    def get_usage_stats(self) -> Dict:
        """Usage of both windows plus the number of waiting requests"""
        stats = self.tracker.stats()
        return {
            "short_term": stats["short_term"],
            "long_term": stats["long_term"],
            "queue_depth": self.queue.depth()
        }
