"""
Tests for BackgroundSyncManager

This test suite covers:
1. Starting a sync and the task record it creates
2. Running a sync through the queue, with partial failures
3. Index failures, empty indexes and handler failures
4. Polling: monotonic progress, unknown and expired task ids
5. Blocking batch fetches
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from src.api.errors import NotFound, ProviderError
from src.models.models import SYNC_COMPLETED, SYNC_FAILED, SYNC_PENDING, SYNC_RUNNING
from src.services.request_queue import RequestQueue
from src.services.sync_manager import BackgroundSyncManager

from conftest import drain, ok, status

STATUS_ORDER = [SYNC_PENDING, SYNC_RUNNING, SYNC_COMPLETED]


def run_sync(sync_manager, request_queue, options=None):
    result = sync_manager.start_background_sync("athlete1", "token123", options or {"limit": 10})
    drain(request_queue)
    return sync_manager.get_sync_task_status(result["task_id"])


# =============================================================================
# START TESTS
# =============================================================================

@pytest.mark.unit
def test_start_returns_pending_task(sync_manager):
    result = sync_manager.start_background_sync("athlete1", "token123", {"limit": 10})

    assert result == {
        "task_id": "sync_athlete1_1717228800000",
        "status": "pending",
        "message": "Background sync started"
    }

    task = sync_manager.get_sync_task_status(result["task_id"])
    assert task.status == SYNC_PENDING
    assert task.owner_id == "athlete1"
    assert task.options == {"limit": 10, "page": 1}
    assert task.total_units == 0


@pytest.mark.unit
def test_start_queues_priority_index_request(sync_manager, request_queue, transport):
    """The index request is authorized and jumps ahead of waiting requests"""
    request_queue.submit(sync_manager.client.activity_request("other", 5), "athlete2")

    sync_manager.start_background_sync("athlete1", "token123", {"limit": 15, "page": 2})
    request_queue.tick()

    index_call = transport.calls[0]
    assert index_call.endpoint.endswith("/athlete/activities")
    assert index_call.params == {"per_page": 15, "page": 2}
    assert index_call.headers["Authorization"] == "Bearer token123"


@pytest.mark.unit
def test_default_limit_used_without_options(sync_manager):
    result = sync_manager.start_background_sync("athlete1", "token123")

    task = sync_manager.get_sync_task_status(result["task_id"])
    assert task.options["limit"] == 30


@pytest.mark.unit
def test_task_ids_unique_within_same_millisecond(sync_manager):
    first = sync_manager.start_background_sync("athlete1", "token123")
    second = sync_manager.start_background_sync("athlete1", "token123")

    assert first["task_id"] != second["task_id"]
    assert second["task_id"] == "sync_athlete1_1717228800001"
    assert set(sync_manager.active_task_ids()) == {first["task_id"], second["task_id"]}


@pytest.mark.unit
@pytest.mark.parametrize("options", [{"limit": -5}, {"limit": 0}, {"page": -1}, {"page": 0}])
def test_invalid_options_rejected(sync_manager, request_queue, options):
    with pytest.raises(ValueError):
        sync_manager.start_background_sync("athlete1", "token123", options)

    assert request_queue.depth() == 0


# =============================================================================
# SYNC RUN TESTS
# =============================================================================

@pytest.mark.unit
def test_sync_fetches_every_activity(sync_manager, request_queue, transport, sample_activities):
    transport.script("/athlete/activities", ok(sample_activities))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.total_units == 10
    assert task.completed_units == 10
    assert task.progress_percent == 100
    assert task.error_count == 0
    assert task.ended_at is not None
    assert task.duration_ms == 0
    assert len(transport.calls) == 11
    assert sync_manager.active_task_ids() == []


@pytest.mark.unit
def test_unit_failures_recorded_without_failing_task(sync_manager, request_queue, transport, sample_activities):
    """Three failing activities out of ten: completed, with three errors"""
    transport.script("/athlete/activities", ok(sample_activities))
    for activity_id in (1002, 1005, 1007):
        transport.script(f"/activities/{activity_id}", status(500, "HTTP 500 Internal Server Error"))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.completed_units == 10
    assert task.error_count == 3
    assert sorted(e["unit_ref"] for e in task.errors) == ["1002", "1005", "1007"]
    assert all(e["message"] == "HTTP 500 Internal Server Error" for e in task.errors)


@pytest.mark.unit
def test_unit_detail_requests_are_background(sync_manager, request_queue, transport, call_log, sample_activities):
    transport.script("/athlete/activities", ok(sample_activities))

    run_sync(sync_manager, request_queue)

    records = call_log.recent(100)
    detail = [r for r in records if "/activities/1" in r["endpoint"]]
    assert len(detail) == 10
    assert all(r["background"] for r in detail)


@pytest.mark.unit
def test_recorded_errors_are_capped(request_queue, state_store, strava_client, inline_executor,
                                    sleeper, fake_clock, transport, sample_activities):
    manager = BackgroundSyncManager(request_queue, state_store, strava_client, max_recorded_errors=2,
                                    executor=inline_executor, sleep=sleeper, clock=fake_clock)
    transport.script("/athlete/activities", ok(sample_activities))
    for activity_id in (1001, 1002, 1003):
        transport.script(f"/activities/{activity_id}", status(404))

    task = run_sync(manager, request_queue)

    assert task.error_count == 3
    assert len(task.errors) == 2


@pytest.mark.unit
def test_detail_requests_submitted_in_groups(request_queue, state_store, strava_client, inline_executor,
                                             sleeper, fake_clock, transport, sample_activities):
    """Ten activities in groups of four give two pauses between groups"""
    manager = BackgroundSyncManager(request_queue, state_store, strava_client, group_size=4,
                                    group_pause=2.0, executor=inline_executor, sleep=sleeper,
                                    clock=fake_clock)
    transport.script("/athlete/activities", ok(sample_activities))

    task = run_sync(manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert sleeper.calls.count(2.0) == 2


@pytest.mark.unit
def test_activity_handler_receives_details(request_queue, state_store, strava_client, inline_executor,
                                           sleeper, fake_clock, transport):
    handled = []
    manager = BackgroundSyncManager(request_queue, state_store, strava_client,
                                    activity_handler=lambda owner, a: handled.append((owner, a["id"])),
                                    executor=inline_executor, sleep=sleeper, clock=fake_clock)
    transport.script("/athlete/activities", ok([{"id": 1}, {"id": 2}]))
    transport.script("/activities/1", ok({"id": 1}))
    transport.script("/activities/2", ok({"id": 2}))

    run_sync(manager, request_queue)

    assert handled == [("athlete1", 1), ("athlete1", 2)]


@pytest.mark.unit
def test_handler_failure_recorded_as_unit_error(request_queue, state_store, strava_client, inline_executor,
                                                sleeper, fake_clock, transport):
    def handler(owner_id, activity):
        raise ValueError("bad activity")

    manager = BackgroundSyncManager(request_queue, state_store, strava_client, activity_handler=handler,
                                    executor=inline_executor, sleep=sleeper, clock=fake_clock)
    transport.script("/athlete/activities", ok([{"id": 1}]))

    task = run_sync(manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.errors == [{"unit_ref": "1", "message": "Activity handler failed: bad activity"}]


@pytest.mark.unit
def test_units_that_cannot_be_queued_are_recorded(sync_manager, request_queue, transport,
                                                  strava_client, monkeypatch):
    def no_detail_requests(token, activity_id):
        raise RuntimeError("client closed")

    monkeypatch.setattr(strava_client, "activity_request", no_detail_requests)
    transport.script("/athlete/activities", ok([{"id": 1}, {"id": 2}]))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.error_count == 2
    assert task.errors[0]["message"] == "Not queued: client closed"


@pytest.mark.unit
def test_units_recorded_when_feeder_is_shut_down(request_queue, state_store, strava_client, transport):
    feeder = ThreadPoolExecutor(max_workers=1)
    feeder.shutdown()
    manager = BackgroundSyncManager(request_queue, state_store, strava_client, executor=feeder)
    transport.script("/athlete/activities", ok([{"id": 1}, {"id": 2}]))

    task = run_sync(manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.completed_units == 2
    assert task.error_count == 2
    assert task.errors[0]["message"].startswith("Not queued: ")
    assert manager.active_task_ids() == []


# =============================================================================
# INDEX OUTCOME TESTS
# =============================================================================

@pytest.mark.unit
def test_empty_index_completes_immediately(sync_manager, request_queue, transport):
    transport.script("/athlete/activities", ok([]))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.total_units == 0
    assert task.progress_percent == 100
    assert len(transport.calls) == 1


@pytest.mark.unit
def test_index_entries_without_id_counted_as_errors(sync_manager, request_queue, transport, caplog):
    transport.script("/athlete/activities", ok([{"id": 1}, {"name": "Morning Ride"}, {"id": 2}]))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.total_units == 3
    assert task.completed_units == 3
    assert task.error_count == 1
    assert task.errors == [{"unit_ref": None, "message": "Activity entry has no id"}]
    assert len(transport.calls) == 3
    assert "1 index entries have no id" in caplog.text


@pytest.mark.unit
def test_index_with_only_id_less_entries_completes(sync_manager, request_queue, transport):
    transport.script("/athlete/activities", ok([{"name": "Lunch Run"}]))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_COMPLETED
    assert task.total_units == 1
    assert task.error_count == 1
    assert task.progress_percent == 100
    assert len(transport.calls) == 1


@pytest.mark.unit
def test_index_auth_failure_fails_task(sync_manager, request_queue, transport):
    transport.script("/athlete/activities", status(401, "HTTP 401 Unauthorized"))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_FAILED
    assert task.error == "HTTP 401 Unauthorized"
    assert task.ended_at is not None
    assert len(transport.calls) == 1


@pytest.mark.unit
def test_index_server_error_fails_task(sync_manager, request_queue, transport):
    transport.script("/athlete/activities", status(503))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_FAILED
    assert sync_manager.active_task_ids() == []


@pytest.mark.unit
def test_unexpected_index_payload_fails_task(sync_manager, request_queue, transport):
    transport.script("/athlete/activities", ok({"message": "Not a list"}))

    task = run_sync(sync_manager, request_queue)

    assert task.status == SYNC_FAILED
    assert task.error == "Unexpected activity index payload"


# =============================================================================
# POLLING TESTS
# =============================================================================

@pytest.mark.unit
def test_polled_progress_is_monotonic(state_store, strava_client, usage_tracker, inline_executor,
                                      sleeper, fake_clock, transport, sample_activities):
    """Successive snapshots never go backward"""
    queue = RequestQueue(transport, usage_tracker, bucket_size=3, sleep=sleeper)
    manager = BackgroundSyncManager(queue, state_store, strava_client, executor=inline_executor,
                                    sleep=sleeper, clock=fake_clock)
    transport.script("/athlete/activities", ok(sample_activities))
    transport.script("/activities/1004", status(500))

    task_id = manager.start_background_sync("athlete1", "token123", {"limit": 10})["task_id"]
    snapshots = [manager.get_sync_task_status(task_id)]
    while queue.depth():
        queue.tick()
        fake_clock.advance(1)
        snapshots.append(manager.get_sync_task_status(task_id))

    for before, after in zip(snapshots, snapshots[1:]):
        assert after.completed_units >= before.completed_units
        assert after.progress_percent >= before.progress_percent
        assert STATUS_ORDER.index(after.status) >= STATUS_ORDER.index(before.status)
    assert snapshots[-1].status == SYNC_COMPLETED
    assert snapshots[-1].duration_ms == (len(snapshots) - 2) * 1000


@pytest.mark.unit
def test_unknown_task_id_not_found(sync_manager):
    with pytest.raises(NotFound) as exc_info:
        sync_manager.get_sync_task_status("sync_nobody_1")

    assert exc_info.value.task_id == "sync_nobody_1"


@pytest.mark.unit
def test_task_expires_after_ttl(sync_manager, fake_clock):
    task_id = sync_manager.start_background_sync("athlete1", "token123")["task_id"]

    fake_clock.advance(86399)
    assert sync_manager.get_sync_task_status(task_id).status == SYNC_PENDING

    fake_clock.advance(1)
    with pytest.raises(NotFound):
        sync_manager.get_sync_task_status(task_id)


@pytest.mark.unit
def test_task_visible_to_another_manager(sync_manager, request_queue, transport, state_store,
                                         strava_client, sample_activities):
    """Any manager sharing the store can poll a task"""
    transport.script("/athlete/activities", ok(sample_activities))
    task_id = sync_manager.start_background_sync("athlete1", "token123", {"limit": 10})["task_id"]
    drain(request_queue)

    other = BackgroundSyncManager(request_queue, state_store, strava_client)
    try:
        assert other.get_sync_task_status(task_id).status == SYNC_COMPLETED
    finally:
        other.shutdown()


# =============================================================================
# BATCH FETCH TESTS
# =============================================================================

@pytest.mark.unit
def test_batch_sync_requires_ids(sync_manager):
    with pytest.raises(ValueError):
        sync_manager.batch_sync_activities("athlete1", "token123", [])


@pytest.fixture
def running_queue(transport, usage_tracker):
    queue = RequestQueue(transport, usage_tracker, cooling_period=0,
                         inter_request_delay=0, tick_interval=0.01)
    queue.start()
    yield queue
    queue.stop(timeout=2)


@pytest.mark.integration
def test_batch_sync_returns_payloads_in_order(running_queue, state_store, strava_client, sleeper, transport):
    manager = BackgroundSyncManager(running_queue, state_store, strava_client, sleep=sleeper)
    for n in range(12):
        transport.script(f"/activities/{n}", ok({"id": n}))

    try:
        results = manager.batch_sync_activities("athlete1", "token123", range(12))
    finally:
        manager.shutdown()

    assert [r["id"] for r in results] == list(range(12))
    assert sleeper.calls == [2.0]


@pytest.mark.integration
def test_batch_sync_raises_first_failure(running_queue, state_store, strava_client, sleeper, transport):
    manager = BackgroundSyncManager(running_queue, state_store, strava_client, sleep=sleeper)
    transport.script("/activities/2", status(404, "HTTP 404 Not Found"))

    try:
        with pytest.raises(ProviderError):
            manager.batch_sync_activities("athlete1", "token123", [1, 2, 3])
    finally:
        manager.shutdown()
