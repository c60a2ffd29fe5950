"""
Shared test fixtures for the Strava governor test suite

Fixtures are organized by category: test doubles (clock, transport, executor),
storage, governor components, and sample data.
"""

import json
import os

import pytest
from concurrent.futures import Executor, Future
from typing import Dict, List

from src.api.strava_client import StravaClient
from src.models.models import DispatchOutcome, RequestSpec, SyncTask
from src.services.call_log import CallLog
from src.services.request_queue import RequestQueue
from src.services.state_store import StateStore
from src.services.sync_manager import BackgroundSyncManager
from src.services.usage_tracker import UsageTracker

BASE_URL = "https://www.strava.com/api/v3"
START_TIME = 1717228800.0  # 2024-06-01 08:00:00 UTC


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeClock:
    """Manually advanced time source"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTransport:
    """
    Transport answering from per-endpoint scripts

    Each script is a list of outcomes consumed in order; the last one repeats.
    Endpoints without a script get the default outcome.
    """

    def __init__(self, default: DispatchOutcome = None):
        self.default = default or DispatchOutcome(status_code=200, payload={"ok": True})
        self.scripts: Dict[str, List[DispatchOutcome]] = {}
        self.calls: List[RequestSpec] = []
        self.side_effect = None

    def script(self, endpoint_suffix: str, *outcomes: DispatchOutcome) -> None:
        self.scripts[endpoint_suffix] = list(outcomes)

    def send(self, spec: RequestSpec) -> DispatchOutcome:
        self.calls.append(spec)
        if self.side_effect is not None:
            self.side_effect(spec)
        for suffix, outcomes in self.scripts.items():
            if spec.endpoint.endswith(suffix):
                if len(outcomes) > 1:
                    return outcomes.pop(0)
                return outcomes[0]
        return self.default

    def endpoints(self) -> List[str]:
        return [spec.endpoint.replace(BASE_URL, "") for spec in self.calls]


class InlineExecutor(Executor):
    """Executor running submitted work immediately in the caller's thread"""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class SleepRecorder:
    """Stand-in for time.sleep that records the requested pauses"""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def ok(payload=None) -> DispatchOutcome:
    return DispatchOutcome(status_code=200, payload=payload if payload is not None else {"ok": True})


def status(code: int, message: str = "") -> DispatchOutcome:
    return DispatchOutcome(status_code=code, error=message or f"HTTP {code}")


def drain(queue, max_ticks: int = 100) -> int:
    """Tick until the queue is empty; returns the number of ticks used"""
    ticks = 0
    while queue.depth() and ticks < max_ticks:
        queue.tick()
        ticks += 1
    return ticks


# =============================================================================
# TEST DOUBLE FIXTURES
# =============================================================================

@pytest.fixture
def fake_clock() -> FakeClock:
    """
    Provides a controllable clock starting at 2024-06-01 08:00 UTC.

    Usage:
        def test_window(fake_clock, usage_tracker):
            fake_clock.advance(900)
    """
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    """Provides a transport answering 200 unless scripted otherwise"""
    return ScriptedTransport()


@pytest.fixture
def sleeper() -> SleepRecorder:
    """Provides a no-op sleep that records pauses"""
    return SleepRecorder()


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


# =============================================================================
# STORAGE FIXTURES
# =============================================================================

@pytest.fixture
def temp_data_dir(tmp_path):
    """
    Provides a temporary directory for state files.
    Directory is automatically cleaned up after test completes.
    """
    data_dir = tmp_path / "test_data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def state_store(temp_data_dir, fake_clock) -> StateStore:
    """Provides a StateStore on the temporary directory, driven by fake_clock"""
    return StateStore(str(temp_data_dir), clock=fake_clock)


@pytest.fixture
def call_log() -> CallLog:
    """Provides an in-memory call log"""
    return CallLog()


# =============================================================================
# GOVERNOR COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def usage_tracker(state_store, fake_clock) -> UsageTracker:
    """Provides a tracker with Strava's default ceilings (100 / 15 min, 1000 / day)"""
    return UsageTracker(state_store, clock=fake_clock)


@pytest.fixture
def request_queue(transport, usage_tracker, call_log, sleeper) -> RequestQueue:
    """Provides a queue that never really sleeps; drive it with tick()"""
    return RequestQueue(transport, usage_tracker, call_log=call_log, sleep=sleeper)


@pytest.fixture
def strava_client() -> StravaClient:
    return StravaClient(base_url=BASE_URL)


@pytest.fixture
def sync_manager(request_queue, state_store, strava_client, inline_executor, sleeper, fake_clock) -> BackgroundSyncManager:
    """Provides a sync manager that queues unit requests synchronously"""
    return BackgroundSyncManager(
        request_queue,
        state_store,
        strava_client,
        executor=inline_executor,
        sleep=sleeper,
        clock=fake_clock
    )


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_activities() -> List[Dict]:
    """
    Provides an activity index of 10 rides, as returned by /athlete/activities.
    """
    return [
        {"id": 1000 + i, "name": f"Col ride {i}", "type": "Ride", "distance": 42000.0 + i}
        for i in range(10)
    ]


@pytest.fixture
def sample_sync_task() -> SyncTask:
    """Provides a running SyncTask with 4 units"""
    task = SyncTask(task_id="sync_athlete1_1717228800000", owner_id="athlete1", started_at=START_TIME)
    task.total_units = 4
    task.transition("running")
    return task


# =============================================================================
# UTILITY FIXTURES - Helper functions and test utilities
# =============================================================================

@pytest.fixture
def mock_responses():
    """
    Provides the responses library for mocking HTTP requests.
    Must be used as a context manager or decorator.

    Usage:
        @responses.activate
        def test_api_call(mock_responses):
            mock_responses.add(
                responses.GET,
                "https://www.strava.com/api/v3/activities/123",
                json={"id": 123},
                status=200
            )
    """
    import responses
    return responses


@pytest.fixture
def freezer():
    """
    Provides freezegun's freeze_time for code that reads the wall clock.

    Usage:
        def test_window(freezer):
            with freezer("2024-06-01 08:00:00") as frozen:
                frozen.tick(900)
    """
    from freezegun import freeze_time
    return freeze_time


@pytest.fixture
def assert_json_equal():
    """
    Provides a helper function for comparing JSON-serializable objects.
    """
    def _assert_equal(expected, actual, msg=None):
        """Compare two JSON-serializable objects"""
        assert json.dumps(expected, sort_keys=True) == json.dumps(actual, sort_keys=True), msg

    return _assert_equal


# =============================================================================
# CONFIGURATION FIXTURES - Test environment setup
# =============================================================================

@pytest.fixture(autouse=True)
def reset_environment_variables(monkeypatch):
    """
    Removes STRAVA_* overrides for each test so settings come from defaults.

    Note:
        This fixture runs automatically for every test (autouse=True)
    """
    for name in list(os.environ):
        if name.startswith("STRAVA_"):
            monkeypatch.delenv(name, raising=False)


# =============================================================================
# MARKER FIXTURES - Pytest markers for test organization
# =============================================================================

# Use these markers in tests:
# @pytest.mark.unit - Fast unit tests with no dependencies
# @pytest.mark.integration - Tests running the queue worker thread
# @pytest.mark.slow - Tests that take significant time
# @pytest.mark.api - Tests that exercise the Strava HTTP client (mocked)
