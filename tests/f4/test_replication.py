"""Tests for the replication coordinator (F4)."""

import asyncio

import pytest

from learnportal.db.record_store import RecordStore
from learnportal.sync.coordinator import ReplicationCoordinator, collection_for


@pytest.fixture
def store(tmp_path, clock):
    store = RecordStore(tmp_path / "data", clock=clock)
    store.set_current_user("alice")
    return store


@pytest.fixture
def coordinator(store, fake_remote):
    """Online coordinator attached to the store."""
    coordinator = ReplicationCoordinator(fake_remote, delay_seconds=0.01, timeout_seconds=0.5, online=True)
    coordinator.attach(store)
    return coordinator


class TestCollectionNames:
    """Tests for local table to remote collection mapping."""

    def test_unscoped_and_scoped(self):
        assert collection_for("users", None) == "users"
        assert collection_for("progress", "alice") == "users/alice/progress"


class TestQueue:
    """Tests for enqueueing and flushing."""

    def test_write_is_local_first(self, store, coordinator, fake_remote):
        """Without a running loop, writes only queue jobs."""
        store.save("progress", {"id": "p1", "status": "completed"})
        assert store.get("progress", "p1")["status"] == "completed"
        assert len(coordinator.pending) == 1
        assert fake_remote.calls == []

    @pytest.mark.asyncio
    async def test_flush_replicates(self, store, coordinator, fake_remote):
        """flush() drains the queue into the remote store."""
        store.save("progress", {"id": "p1"})
        store.save("users", {"id": "alice", "username": "alice"})
        report = await coordinator.flush()

        assert report.attempted == 2
        assert report.succeeded == 2
        assert coordinator.pending == []
        assert ("save", "users/alice/progress", "p1") in fake_remote.calls
        assert ("save", "users", "alice") in fake_remote.calls

    @pytest.mark.asyncio
    async def test_last_local_write_wins(self, store, coordinator, fake_remote):
        """A newer write to the same record replaces the pending job."""
        store.save("progress", {"id": "p1", "timeSpent": 100})
        store.save("progress", {"id": "p1", "timeSpent": 200})
        assert len(coordinator.pending) == 1

        await coordinator.flush()
        assert fake_remote.docs["users/alice/progress"]["p1"]["timeSpent"] == 200
        assert len(fake_remote.calls) == 1

    @pytest.mark.asyncio
    async def test_delete_replicated(self, store, coordinator, fake_remote):
        """Deletes are mirrored."""
        store.save("progress", {"id": "p1"})
        await coordinator.flush()
        store.delete("progress", "p1")
        await coordinator.flush()
        assert ("delete", "users/alice/progress", "p1") in fake_remote.calls
        assert fake_remote.docs["users/alice/progress"] == {}

    @pytest.mark.asyncio
    async def test_deferred_drain_with_running_loop(self, store, coordinator, fake_remote):
        """With a running loop, jobs drain after the short delay."""
        store.save("progress", {"id": "p1"})
        assert fake_remote.calls == []
        await asyncio.sleep(0.1)
        assert fake_remote.calls == [("save", "users/alice/progress", "p1")]
        assert coordinator.pending == []


class TestFailurePolicy:
    """Replication never blocks or rolls back local writes."""

    @pytest.mark.asyncio
    async def test_offline_jobs_skipped(self, store, fake_remote):
        """Offline coordinators drop jobs without calling the remote."""
        coordinator = ReplicationCoordinator(fake_remote, online=False)
        coordinator.attach(store)
        store.save("progress", {"id": "p1"})
        report = await coordinator.flush()
        assert report.skipped == 1
        assert fake_remote.calls == []
        assert coordinator.pending == []

    @pytest.mark.asyncio
    async def test_offline_drain_rechecks_remote(self, store, fake_remote):
        """A remote that comes back after startup is picked up by the next drain."""
        coordinator = ReplicationCoordinator(fake_remote, online=False, reconnect_seconds=0.0)
        coordinator.attach(store)
        store.save("progress", {"id": "p1"})
        report = await coordinator.flush()
        assert coordinator.is_online
        assert report.succeeded == 1
        assert ("save", "users/alice/progress", "p1") in fake_remote.calls

    @pytest.mark.asyncio
    async def test_reconnect_is_rate_limited(self, store, make_remote):
        """Within the reconnect interval an offline drain does not ping again."""
        remote = make_remote(fail=True)
        coordinator = ReplicationCoordinator(remote, reconnect_seconds=60.0)
        coordinator.attach(store)
        assert await coordinator.check_connection() is False
        remote.fail = False
        store.save("progress", {"id": "p1"})
        report = await coordinator.flush()
        assert report.skipped == 1
        assert not coordinator.is_online

    @pytest.mark.asyncio
    async def test_remote_errors_swallowed(self, store, make_remote):
        """Remote failures are counted, the local record stays."""
        coordinator = ReplicationCoordinator(make_remote(fail=True), online=True)
        coordinator.attach(store)
        store.save("progress", {"id": "p1"})
        report = await coordinator.flush()
        assert report.failed == 1
        assert store.get("progress", "p1") is not None

    @pytest.mark.asyncio
    async def test_timeout_abandons_call(self, store, make_remote):
        """Calls exceeding the timeout are treated as failures."""
        coordinator = ReplicationCoordinator(make_remote(delay=1.0), timeout_seconds=0.01, online=True)
        coordinator.attach(store)
        store.save("progress", {"id": "p1"})
        report = await coordinator.flush()
        assert report.failed == 1
        assert report.succeeded == 0


class TestConnectivityAndRecovery:
    """Tests for check_connection, push_all and recover."""

    @pytest.mark.asyncio
    async def test_check_connection(self, fake_remote):
        """ping() drives the online flag."""
        coordinator = ReplicationCoordinator(fake_remote)
        assert await coordinator.check_connection() is True
        assert coordinator.is_online
        fake_remote.fail = True
        assert await coordinator.check_connection() is False

    @pytest.mark.asyncio
    async def test_push_all(self, store, fake_remote):
        """Every local record is queued for a full sync."""
        store.save("users", {"id": "alice", "username": "alice"})
        store.save("progress", {"id": "p1"})
        store.save("progress", {"id": "p2"})
        coordinator = ReplicationCoordinator(fake_remote, online=True)
        assert coordinator.push_all(store) == 3
        report = await coordinator.flush()
        assert report.succeeded == 3

    @pytest.mark.asyncio
    async def test_recover_adds_missing_only(self, store, coordinator, fake_remote):
        """Recovery restores remote-only records without overwriting local ones."""
        store.save("progress", {"id": "local1", "status": "completed"})
        await coordinator.flush()
        fake_remote.docs["users/alice/progress"]["local1"]["status"] = "not_started"
        fake_remote.docs["users/alice/progress"]["r1"] = {"id": "r1", "status": "in_progress"}

        restored = await coordinator.recover(store, "progress", "alice")
        assert restored == 1
        assert store.get("progress", "local1")["status"] == "completed"
        assert store.get("progress", "r1")["status"] == "in_progress"
        assert coordinator.pending == []

    @pytest.mark.asyncio
    async def test_recover_offline_is_noop(self, store, fake_remote):
        coordinator = ReplicationCoordinator(fake_remote, online=False)
        assert await coordinator.recover(store, "progress", "alice") == 0

    @pytest.mark.asyncio
    async def test_aclose(self, store, coordinator, fake_remote):
        """aclose drains pending jobs and closes the remote."""
        store.save("progress", {"id": "p1"})
        await coordinator.aclose()
        assert fake_remote.closed
        assert ("save", "users/alice/progress", "p1") in fake_remote.calls
        store.save("progress", {"id": "p2"})
        assert coordinator.pending == []
