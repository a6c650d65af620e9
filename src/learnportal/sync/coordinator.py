"""Deferred, best-effort replication of local writes.

The coordinator listens to RecordStore mutations and queues one job per
(collection, record id). A newer write to the same record replaces the
pending job, so the last local write wins. Jobs are drained:
- on a short timer (loop.call_later) when an event loop is running
- explicitly through flush(), which tests use to drain deterministically

While offline, a drain re-checks the remote at most once every
reconnect_seconds before deciding to drop its jobs.

Replication never blocks or rolls back a local write: offline jobs are
dropped, every remote call is bounded by a timeout, and all errors are
logged and swallowed.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from learnportal.core.errors import PersistenceError
from learnportal.db.record_store import Mutation, RecordStore
from learnportal.sync.remote import NullRemoteStore, RemoteStore

logger = structlog.get_logger(__name__)


def collection_for(table: str, namespace: str | None) -> str:
    """Remote collection a local table maps to."""
    if namespace is None:
        return table
    return f"users/{namespace}/{table}"


@dataclass
class ReplicationJob:
    """One pending remote write."""

    op: str
    collection: str
    record_id: str | None = None
    record: dict[str, Any] | None = None

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.collection, self.record_id)


@dataclass
class FlushReport:
    """Counts from one drain of the queue."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class ReplicationCoordinator:
    """Mirrors local mutations to a RemoteStore."""

    def __init__(
        self,
        remote: RemoteStore | None = None,
        delay_seconds: float = 0.1,
        timeout_seconds: float = 5.0,
        online: bool = False,
        reconnect_seconds: float = 30.0,
    ):
        self.remote = remote or NullRemoteStore()
        self.delay_seconds = delay_seconds
        self.timeout_seconds = timeout_seconds
        self.reconnect_seconds = reconnect_seconds
        self._online = online
        self._last_reconnect = time.monotonic()
        self._queue: OrderedDict[tuple[str, str | None], ReplicationJob] = OrderedDict()
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("replication_connectivity_changed", online=online)
        self._online = online

    @property
    def pending(self) -> list[ReplicationJob]:
        return list(self._queue.values())

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def attach(self, store: RecordStore) -> None:
        """Start listening to a store's mutations."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = store.subscribe(self.on_mutation)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_mutation(self, mutation: Mutation) -> None:
        """Queue a committed local change for replication."""
        collection = collection_for(mutation.table, mutation.namespace)
        if mutation.op == "clear":
            for key in [k for k in self._queue if k[0] == collection]:
                del self._queue[key]
        job = ReplicationJob(mutation.op, collection, mutation.record_id, mutation.record)
        self._enqueue(job)

    def _enqueue(self, job: ReplicationJob) -> None:
        self._queue.pop(job.key, None)
        self._queue[job.key] = job
        self._schedule()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: jobs wait for an explicit flush()
            return
        if self._timer is None:
            self._timer = loop.call_later(self.delay_seconds, self._start_drain)

    def _start_drain(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------------------
    # Drain
    # -------------------------------------------------------------------------

    async def _apply(self, job: ReplicationJob) -> bool:
        if job.op == "save":
            return await self.remote.save(job.collection, job.record or {}, job.record_id) is not None
        if job.op == "delete":
            return await self.remote.delete(job.collection, job.record_id)
        # clear
        ok = True
        for doc in await self.remote.get_all(job.collection):
            if doc.get("id"):
                ok = await self.remote.delete(job.collection, str(doc["id"])) and ok
        return ok

    async def flush(self) -> FlushReport:
        """Drain every pending job now.

        Returns:
            FlushReport; offline jobs are counted as skipped and dropped
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        jobs = list(self._queue.values())
        self._queue.clear()
        report = FlushReport()
        if not jobs:
            return report

        if not self._online and time.monotonic() - self._last_reconnect >= self.reconnect_seconds:
            await self.check_connection()
        if not self._online:
            report.skipped = len(jobs)
            logger.debug("replication_skipped_offline", jobs=len(jobs))
            return report

        for job in jobs:
            report.attempted += 1
            try:
                ok = await asyncio.wait_for(self._apply(job), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "replication_timeout",
                    op=job.op,
                    collection=job.collection,
                    record_id=job.record_id,
                )
                ok = False
            except Exception as e:
                logger.warning(
                    "replication_failed",
                    op=job.op,
                    collection=job.collection,
                    record_id=job.record_id,
                    error=str(e),
                )
                ok = False
            if ok:
                report.succeeded += 1
            else:
                report.failed += 1

        logger.info(
            "replication_flushed",
            attempted=report.attempted,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        return report

    # -------------------------------------------------------------------------
    # Connectivity, full sync, recovery
    # -------------------------------------------------------------------------

    async def check_connection(self) -> bool:
        """Ping the remote store and update the online flag."""
        self._last_reconnect = time.monotonic()
        try:
            online = await asyncio.wait_for(self.remote.ping(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            online = False
        except Exception as e:
            logger.warning("replication_ping_failed", error=str(e))
            online = False
        self.set_online(bool(online))
        return self._online

    def push_all(self, store: RecordStore) -> int:
        """Queue every local record for replication.

        Returns:
            Number of jobs queued
        """
        count = 0
        scopes: list[str | None] = [None, *store.namespaces()]
        for namespace in scopes:
            for table in store.tables(namespace):
                for record in store.get_all(table, namespace=namespace):
                    self._enqueue(
                        ReplicationJob(
                            "save",
                            collection_for(table, namespace),
                            str(record.get("id")),
                            record,
                        )
                    )
                    count += 1
        logger.info("replication_full_sync_queued", jobs=count)
        return count

    async def recover(self, store: RecordStore, table: str, namespace: str | None = None) -> int:
        """Copy remote records missing locally into a local table.

        Local records are never overwritten, and restored records are not
        replicated back.

        Returns:
            Number of records restored
        """
        if not self._online:
            logger.info("recovery_skipped_offline", table=table, namespace=namespace)
            return 0
        ns = None if store.is_global(table) else namespace
        collection = collection_for(table, ns)
        try:
            remote_docs = await asyncio.wait_for(
                self.remote.get_all(collection), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("recovery_timeout", collection=collection)
            return 0
        except Exception as e:
            logger.warning("recovery_failed", collection=collection, error=str(e))
            return 0

        try:
            local = store.get_all(table, namespace=ns, strict=True)
        except PersistenceError as e:
            logger.error("recovery_local_unreadable", table=table, namespace=ns, error=str(e))
            return 0
        local_ids = {r.get("id") for r in local}
        missing = [d for d in remote_docs if d.get("id") and d.get("id") not in local_ids]
        if missing:
            store.replace_all(table, local + missing, namespace=ns)
        logger.info("recovery_done", collection=collection, restored=len(missing))
        return len(missing)

    async def aclose(self) -> None:
        """Drain what is pending and close the remote client."""
        await self.flush()
        for task in list(self._tasks):
            task.cancel()
        self.detach()
        await self.remote.aclose()
