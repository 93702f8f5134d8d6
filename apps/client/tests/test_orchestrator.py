"""
Sync Orchestrator Tests (mocked server)

Covers:
- trigger dropping (unconfigured, offline, round already scheduled)
- failed rounds keep local records and tombstones
- records edited while a round is in flight keep their local state
- minimum round duration, periodic timer, status snapshot
"""
import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from sync_client.local_store import LocalStore
from sync_client.orchestrator import SyncOrchestrator, SyncState, SyncTrigger
from domain_records import exercise
from sync_helpers import ManualClock, empty_data, mock_transport

KEY = "0b4a9c2e-6f1d-4e8a-9b3c-2d5e7f8a1b6c"


@pytest_asyncio.fixture
async def make_mocked(settings):
    """Factory for an orchestrator whose server is ``handler``."""
    created = []

    def _make(handler, configured=True, **setting_overrides):
        device_settings = settings.model_copy(update=setting_overrides) if setting_overrides else settings
        orchestrator = SyncOrchestrator(
            LocalStore(),
            mock_transport(handler),
            settings=device_settings,
            clock=ManualClock(1000),
        )
        if configured:
            orchestrator.store.set_meta("sync_key", KEY)
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.aclose()
        orchestrator.store.close()


def ids_of(orchestrator, table="exercises"):
    return [record["id"] for record in orchestrator.store.list(table)]


def echo_handler(requests):
    """Server that accepts everything and returns the live rows it was sent."""
    def handler(request):
        body = json.loads(request.content) if request.content else {}
        requests.append(body)
        data = empty_data(5000)
        for table in ("exercises", "workouts", "sessions", "personal_records", "preferences"):
            data[table] = [row for row in body.get(table, []) if row.get("deleted_at") is None]
        return httpx.Response(200, json={"success": True, "data": data})
    return handler


class TestTriggers:

    @pytest.mark.asyncio
    async def test_unconfigured_drops_triggers(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), configured=False)

        orchestrator.store.add("exercises", exercise())
        assert orchestrator.trigger() is False
        result = await orchestrator.sync_now()

        assert result.success is False
        assert result.error == "Sync not configured"
        assert requests == []
        assert orchestrator.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_offline_drops_triggers(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests))
        orchestrator.set_online(False)

        orchestrator.store.add("exercises", exercise())
        await orchestrator.wait_idle()

        assert orchestrator.trigger(SyncTrigger.EXPLICIT) is False
        assert (await orchestrator.sync_now()).error == "Offline"
        assert requests == []

    @pytest.mark.asyncio
    async def test_coming_online_triggers_round(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests))
        orchestrator.set_online(False)
        orchestrator.store.add("exercises", exercise())

        orchestrator.set_online(True)
        await orchestrator.wait_idle()

        assert len(requests) == 1
        assert requests[0]["exercises"][0]["id"] == "e1"

    @pytest.mark.asyncio
    async def test_triggers_while_scheduled_are_dropped(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), DEBOUNCE_MS=50)

        assert orchestrator.trigger() is True
        assert orchestrator.state == SyncState.SCHEDULING
        assert orchestrator.trigger(SyncTrigger.MUTATION) is False
        orchestrator.store.add("exercises", exercise())

        await orchestrator.wait_idle()

        assert len(requests) == 1
        assert orchestrator.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_sync_now_replaces_scheduled_round(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), DEBOUNCE_MS=10_000)
        orchestrator.trigger()

        result = await orchestrator.sync_now()
        await orchestrator.wait_idle()

        assert result.success is True
        assert result.sync_timestamp == 5000
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_mutation_schedules_round(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests))

        orchestrator.store.add("exercises", exercise())
        await orchestrator.wait_idle()

        assert len(requests) == 1
        assert requests[0]["exercises"][0]["updated_at"] == 1000
        assert orchestrator.last_sync_time == 5000

    @pytest.mark.asyncio
    async def test_periodic_timer(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), INTERVAL_S=0.01)

        orchestrator.start()
        await asyncio.sleep(0.1)
        await orchestrator.stop()

        assert len(requests) >= 1
        assert orchestrator.state == SyncState.IDLE


class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_round_keeps_tombstones(self, make_mocked):
        orchestrator = make_mocked(
            lambda request: httpx.Response(503, json={"success": False, "error": "unavailable"}),
            configured=False,
        )
        orchestrator.store.add("exercises", exercise("e1"))
        orchestrator.store.add("exercises", exercise("e2"))
        orchestrator.store.delete("exercises", "e1")
        orchestrator.store.set_meta("sync_key", KEY)

        result = await orchestrator.sync_now()

        assert result.success is False
        assert "unavailable" in result.error
        assert orchestrator.tombstones.count() == 1
        assert [r["id"] for r in orchestrator.store.list("exercises")] == ["e2"]
        assert orchestrator.last_sync_time is None
        assert orchestrator.state == SyncState.IDLE
        assert orchestrator.status().last_error == result.error

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_round(self, make_mocked):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        orchestrator = make_mocked(handler)
        result = await orchestrator.sync_now()

        assert result.success is False
        assert orchestrator.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_undecodable_response_keeps_local_state(self, make_mocked):
        data = empty_data(1)
        data["exercises"] = [{"id": "broken", "updated_at": 1}]
        orchestrator = make_mocked(lambda request: httpx.Response(200, json={"success": True, "data": data}))
        with orchestrator.capture.suppressed():
            orchestrator.store.add("exercises", exercise())

        result = await orchestrator.sync_now()

        assert result.success is False
        assert orchestrator.store.get("exercises", "e1") is not None


class TestRounds:

    @pytest.mark.asyncio
    async def test_tombstones_cleared_after_success(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), configured=False)
        orchestrator.store.add("exercises", exercise())
        orchestrator.store.delete("exercises", "e1")
        orchestrator.store.set_meta("sync_key", KEY)

        result = await orchestrator.sync_now()

        assert result.success is True
        assert requests[0]["exercises"][0]["deleted_at"] == 1000
        assert orchestrator.tombstones.count() == 0

    @pytest.mark.asyncio
    async def test_round_does_not_retrigger_itself(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests))
        with orchestrator.capture.suppressed():
            orchestrator.store.add("exercises", exercise())

        await orchestrator.sync_now()
        await orchestrator.wait_idle()

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_edits_during_round_are_preserved(self, make_mocked):
        orchestrator = None

        async def handler(request):
            # The user edits e1 and deletes e2 while the push is on the wire
            orchestrator.store.put("exercises", exercise("e1", name="Edited mid-round"))
            orchestrator.store.delete("exercises", "e2")
            data = empty_data(5000)
            data["exercises"] = [
                dict(row, deleted_at=None) for row in json.loads(request.content)["exercises"]
            ]
            return httpx.Response(200, json={"success": True, "data": data})

        orchestrator = make_mocked(handler, configured=False)
        orchestrator.store.add("exercises", exercise("e1"))
        orchestrator.store.add("exercises", exercise("e2"))
        orchestrator.store.set_meta("sync_key", KEY)

        result = await orchestrator.sync_now()

        assert result.success is True
        assert orchestrator.store.get("exercises", "e1")["name"] == "Edited mid-round"
        assert orchestrator.store.get("exercises", "e2") is None
        # The mid-round deletion was not part of this push
        assert orchestrator.tombstones.count() == 1

    @pytest.mark.asyncio
    async def test_minimum_round_duration(self, make_mocked):
        orchestrator = make_mocked(echo_handler([]), MIN_ROUND_MS=50)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await orchestrator.sync_now()

        assert loop.time() - started >= 0.045

    @pytest.mark.asyncio
    async def test_in_flight_rejects_second_round(self, make_mocked):
        orchestrator = make_mocked(echo_handler([]), MIN_ROUND_MS=50)

        first = asyncio.create_task(orchestrator.sync_now())
        await asyncio.sleep(0)
        second = await orchestrator.sync_now()
        assert (await first).success is True

        assert second.success is False
        assert second.error == "Sync already in progress"


class TestKeys:

    @pytest.mark.asyncio
    async def test_invalid_key_rejected_without_request(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), configured=False)

        result = await orchestrator.set_sync_key("NOT-A-KEY")

        assert result.success is False
        assert result.error == "Invalid sync key format"
        assert requests == []
        assert orchestrator.is_sync_enabled() is False

    @pytest.mark.asyncio
    async def test_trailing_newline_key_rejected(self, make_mocked):
        requests = []
        orchestrator = make_mocked(echo_handler(requests), configured=False)

        result = await orchestrator.set_sync_key(KEY + "\n")

        assert result.error == "Invalid sync key format"
        assert requests == []
        assert orchestrator.sync_key is None

    @pytest.mark.asyncio
    async def test_key_cleared_mid_round_discards_response(self, make_mocked):
        released = asyncio.Event()
        arrived = asyncio.Event()

        async def handler(request):
            arrived.set()
            await released.wait()
            return httpx.Response(200, json={"success": True, "data": empty_data(9999)})

        orchestrator = make_mocked(handler, configured=False)
        orchestrator.store.add("exercises", exercise())
        orchestrator.store.delete("exercises", "e1")
        orchestrator.store.add("exercises", exercise("e2"))
        orchestrator.store.set_meta("sync_key", KEY)

        round_task = asyncio.create_task(orchestrator.sync_now())
        await arrived.wait()
        orchestrator.clear_sync_key()
        released.set()
        result = await round_task

        assert result.success is False
        assert orchestrator.sync_key is None
        assert orchestrator.last_sync_time is None
        assert ids_of(orchestrator) == ["e2"]
        assert orchestrator.tombstones.count() == 1

    @pytest.mark.asyncio
    async def test_key_switched_mid_round_discards_response(self, make_mocked):
        other_key = "1c5b0d3f-7a2e-4f9b-8c4d-3e6f8a9b2c7d"
        released = asyncio.Event()
        arrived = asyncio.Event()

        async def handler(request):
            arrived.set()
            await released.wait()
            return httpx.Response(200, json={"success": True, "data": empty_data(9999)})

        orchestrator = make_mocked(handler)
        with orchestrator.capture.suppressed():
            orchestrator.store.add("exercises", exercise())

        round_task = asyncio.create_task(orchestrator.sync_now())
        await arrived.wait()
        orchestrator.store.set_meta("sync_key", other_key)
        released.set()
        result = await round_task

        assert result.success is False
        assert orchestrator.sync_key == other_key
        assert orchestrator.last_sync_time is None
        assert ids_of(orchestrator) == ["e1"]

    @pytest.mark.asyncio
    async def test_unknown_key_not_adopted(self, make_mocked):
        orchestrator = make_mocked(lambda request: httpx.Response(404), configured=False)

        result = await orchestrator.set_sync_key(KEY)

        assert result.success is False
        assert orchestrator.sync_key is None

    @pytest.mark.asyncio
    async def test_clear_sync_key_keeps_local_data(self, make_mocked):
        orchestrator = make_mocked(echo_handler([]))
        await orchestrator.sync_now()
        with orchestrator.capture.suppressed():
            orchestrator.store.add("exercises", exercise())

        orchestrator.clear_sync_key()

        status = orchestrator.status()
        assert status.configured is False
        assert status.last_sync_time is None
        assert orchestrator.store.get("exercises", "e1") is not None

    @pytest.mark.asyncio
    async def test_status_snapshot(self, make_mocked):
        orchestrator = make_mocked(echo_handler([]), configured=False)
        orchestrator.store.add("exercises", exercise())
        orchestrator.store.delete("exercises", "e1")

        status = orchestrator.status()

        assert status.state == SyncState.IDLE
        assert status.online is True
        assert status.configured is False
        assert status.pending_deletions == 1
