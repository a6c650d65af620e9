"""Local record store: named JSON tables with per-user namespacing.

Layout under {data_dir}/records/:
- {table}.json              unscoped tables (the user directory)
- {username}/{table}.json   tables scoped to the current user

Each file holds a flat ordered list of JSON records with a unique "id".
All operations are synchronous and this store is the authoritative state;
mutation listeners (replication) are notified only after the local write.
"""

from __future__ import annotations

import json
import os
import re
import secrets
import string
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Literal

import structlog

from learnportal.core.clock import Clock, SystemClock, epoch_ms, isoformat
from learnportal.core.errors import PersistenceError

logger = structlog.get_logger(__name__)

RECORDS_DIRNAME = "records"
ID_SUFFIX_CHARS = string.ascii_lowercase + string.digits
SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")

Record = dict[str, Any]
Predicate = Callable[[Record], bool]
MutationOp = Literal["save", "delete", "clear"]


class _CurrentUser:
    """Sentinel: resolve the namespace from the store's current user."""

    def __repr__(self) -> str:
        return "CURRENT_USER"


CURRENT_USER: Any = _CurrentUser()


@dataclass(frozen=True)
class Mutation:
    """A committed local change, handed to listeners after the write."""

    op: MutationOp
    table: str
    namespace: str | None
    record_id: str | None = None
    record: Record | None = None


MutationListener = Callable[[Mutation], None]


def _check_segment(value: str, kind: str) -> str:
    if not SAFE_SEGMENT.match(value) or value in (".", ".."):
        raise ValueError(f"Invalid {kind} name: {value!r}")
    return value


class RecordStore:
    """Synchronous JSON-file record store."""

    def __init__(
        self,
        data_dir: Path,
        global_tables: Iterable[str] = ("users",),
        clock: Clock | None = None,
    ):
        self.data_dir = Path(data_dir)
        self.records_dir = self.data_dir / RECORDS_DIRNAME
        self.global_tables = frozenset(global_tables)
        self._clock = clock or SystemClock()
        self._current_user: str | None = None
        self._listeners: list[MutationListener] = []

    # -------------------------------------------------------------------------
    # Namespacing
    # -------------------------------------------------------------------------

    @property
    def current_user(self) -> str | None:
        return self._current_user

    def set_current_user(self, username: str | None) -> None:
        """Scope subsequent user-table operations to this username."""
        if username is not None:
            _check_segment(username, "namespace")
        self._current_user = username
        logger.debug("record_store_user_set", username=username)

    def is_global(self, table: str) -> bool:
        return table in self.global_tables

    def resolve_namespace(self, table: str, namespace: Any = CURRENT_USER) -> str | None:
        """Namespace a table operation applies to (None for unscoped)."""
        if self.is_global(table):
            return None
        if namespace is CURRENT_USER:
            return self._current_user
        return namespace

    def _table_path(self, table: str, namespace: str | None) -> Path:
        _check_segment(table, "table")
        if namespace is None:
            return self.records_dir / f"{table}.json"
        return self.records_dir / _check_segment(namespace, "namespace") / f"{table}.json"

    # -------------------------------------------------------------------------
    # Raw file access
    # -------------------------------------------------------------------------

    def _read(self, table: str, namespace: str | None, strict: bool = False) -> list[Record]:
        """Load a table file.

        A missing file is an empty table. An unreadable file reads as empty
        unless strict, in which case PersistenceError is raised. save() and
        delete() read strictly.
        """
        path = self._table_path(table, namespace)
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("record_table_load_failed", table=table, path=str(path), error=str(e))
            if strict:
                raise PersistenceError(table, f"unreadable table file {path}: {e}") from e
            return []
        if not isinstance(data, list):
            logger.warning("record_table_not_a_list", table=table, path=str(path))
            if strict:
                raise PersistenceError(table, f"table file {path} does not hold a list")
            return []
        return [r for r in data if isinstance(r, dict)]

    def _write(self, table: str, namespace: str | None, records: list[Record]) -> None:
        path = self._table_path(table, namespace)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{table}.", suffix=".tmp", dir=str(path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(records, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(table, str(e)) from e

    def _notify(self, mutation: Mutation) -> None:
        for listener in list(self._listeners):
            try:
                listener(mutation)
            except Exception as e:
                logger.warning(
                    "mutation_listener_failed",
                    table=mutation.table,
                    op=mutation.op,
                    error=str(e),
                )

    def generate_id(self) -> str:
        """Generate a record id: "{epoch_ms}_{9 random chars}"."""
        suffix = "".join(secrets.choice(ID_SUFFIX_CHARS) for _ in range(9))
        return f"{epoch_ms(self._clock.now())}_{suffix}"

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def save(self, table: str, record: Record, namespace: Any = CURRENT_USER) -> str:
        """Upsert a record by id.

        Args:
            table: Table name
            record: Record data; "id" is generated when missing
            namespace: Override the current-user namespace

        Returns:
            The record id

        Raises:
            PersistenceError: If the table file cannot be parsed or written
        """
        ns = self.resolve_namespace(table, namespace)
        now = isoformat(self._clock.now())

        stored = dict(record)
        stored["id"] = str(record.get("id") or self.generate_id())
        stored["updatedAt"] = now

        records = self._read(table, ns, strict=True)
        for i, existing in enumerate(records):
            if existing.get("id") == stored["id"]:
                stored["timestamp"] = record.get("timestamp") or existing.get("timestamp") or now
                records[i] = stored
                break
        else:
            stored["timestamp"] = record.get("timestamp") or now
            records.append(stored)

        self._write(table, ns, records)
        self._notify(Mutation("save", table, ns, stored["id"], dict(stored)))
        return stored["id"]

    def get_all(
        self, table: str, namespace: Any = CURRENT_USER, strict: bool = False
    ) -> list[Record]:
        """Get every record of a table, in stored order.

        Raises:
            PersistenceError: If strict and the table file cannot be parsed
        """
        return self._read(table, self.resolve_namespace(table, namespace), strict=strict)

    def get(self, table: str, record_id: str, namespace: Any = CURRENT_USER) -> Record | None:
        """Get one record by id."""
        return self.find_one(table, lambda r: r.get("id") == record_id, namespace=namespace)

    def find_one(
        self, table: str, predicate: Predicate, namespace: Any = CURRENT_USER
    ) -> Record | None:
        """First record matching predicate, or None."""
        for record in self.get_all(table, namespace=namespace):
            if predicate(record):
                return record
        return None

    def find_many(
        self, table: str, predicate: Predicate | None = None, namespace: Any = CURRENT_USER
    ) -> list[Record]:
        """All records matching predicate (all records if predicate is None)."""
        records = self.get_all(table, namespace=namespace)
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def delete(self, table: str, record_id: str, namespace: Any = CURRENT_USER) -> bool:
        """Delete a record by id.

        Returns:
            True if a record was removed, False if none matched
        """
        ns = self.resolve_namespace(table, namespace)
        records = self._read(table, ns, strict=True)
        remaining = [r for r in records if r.get("id") != record_id]
        if len(remaining) == len(records):
            return False
        self._write(table, ns, remaining)
        self._notify(Mutation("delete", table, ns, record_id))
        return True

    def clear(self, table: str, namespace: Any = CURRENT_USER) -> None:
        """Remove a whole table."""
        ns = self.resolve_namespace(table, namespace)
        path = self._table_path(table, ns)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(table, str(e)) from e
        self._notify(Mutation("clear", table, ns))

    # -------------------------------------------------------------------------
    # Bulk / administrative access
    # -------------------------------------------------------------------------

    def replace_all(self, table: str, records: list[Record], namespace: str | None = None) -> None:
        """Overwrite a table wholesale (backup restore).

        Listeners are not notified; restores are administrative and do not
        replicate.
        """
        ns = None if self.is_global(table) else namespace
        for record in records:
            if not record.get("id"):
                record["id"] = self.generate_id()
        self._write(table, ns, list(records))

    def namespaces(self) -> list[str]:
        """Usernames that have scoped tables on disk."""
        if not self.records_dir.exists():
            return []
        return sorted(d.name for d in self.records_dir.iterdir() if d.is_dir())

    def tables(self, namespace: str | None = None) -> list[str]:
        """Table names present in a namespace (None for unscoped)."""
        base = self.records_dir if namespace is None else self.records_dir / namespace
        if not base.exists():
            return []
        return sorted(p.stem for p in base.glob("*.json"))

    def drop_namespace(self, namespace: str) -> int:
        """Delete every scoped table of a user. Returns tables removed."""
        removed = 0
        for table in self.tables(namespace):
            self.clear(table, namespace=namespace)
            removed += 1
        ns_dir = self.records_dir / _check_segment(namespace, "namespace")
        if ns_dir.exists() and not any(ns_dir.iterdir()):
            ns_dir.rmdir()
        return removed

    def stats(self) -> dict[str, int]:
        """Record counts keyed by "table" or "namespace/table"."""
        result: dict[str, int] = {}
        for table in self.tables():
            result[table] = len(self._read(table, None))
        for ns in self.namespaces():
            for table in self.tables(ns):
                result[f"{ns}/{table}"] = len(self._read(table, ns))
        return result

    def export(self) -> dict[str, list[Record]]:
        """Snapshot of every table keyed like stats()."""
        result: dict[str, list[Record]] = {}
        for table in self.tables():
            result[table] = self._read(table, None)
        for ns in self.namespaces():
            for table in self.tables(ns):
                result[f"{ns}/{table}"] = self._read(table, ns)
        return result

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        """Register a mutation listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
