"""Backup, restore and reset of the record tables.

These work directly on the table files, bypassing services. A reset can
leave the user directory empty; the consistency check re-seeds the
default administrator at the next startup or `portal check`.

Backup format (JSON):
    {"$schema": "portal_backup_v1", "exported_at": "...",
     "tables": {"users": [...], "alice/progress": [...]}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import structlog

from learnportal.core.clock import Clock, SystemClock, isoformat
from learnportal.core.errors import PersistenceError
from learnportal.db.record_store import RecordStore

logger = structlog.get_logger(__name__)

BACKUP_SCHEMA = "portal_backup_v1"
BACKUPS_DIRNAME = "backups"


@dataclass
class MaintenanceResult:
    """Result of a backup, restore or reset."""

    success: bool
    message: str
    path: Path | None = None
    tables: int = 0
    records: int = 0


def create_backup(
    store: RecordStore, output: Path | None = None, clock: Clock | None = None
) -> MaintenanceResult:
    """Export every table to a JSON backup file.

    Args:
        store: Record store to export
        output: Target file (defaults to {data_dir}/backups/portal_backup_<stamp>.json)
        clock: Time source for the export stamp

    Returns:
        MaintenanceResult with the written path
    """
    now = (clock or SystemClock()).now()
    if output is None:
        stamp = now.strftime("%Y%m%d_%H%M%S")
        output = store.data_dir / BACKUPS_DIRNAME / f"portal_backup_{stamp}.json"

    tables = store.export()
    document = {
        "$schema": BACKUP_SCHEMA,
        "exported_at": isoformat(now),
        "tables": tables,
    }
    records = sum(len(r) for r in tables.values())
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
    except OSError as e:
        logger.error("backup_failed", path=str(output), error=str(e))
        return MaintenanceResult(False, f"Could not write backup: {e}")

    logger.info("backup_created", path=str(output), tables=len(tables), records=records)
    return MaintenanceResult(
        True,
        f"Backup written to {output}",
        path=output,
        tables=len(tables),
        records=records,
    )


def restore_backup(store: RecordStore, path: Path) -> MaintenanceResult:
    """Overwrite tables with the contents of a backup file.

    Tables absent from the backup are left untouched. Restored tables are
    not replicated.
    """
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        return MaintenanceResult(False, f"Could not read backup: {e}", path=path)

    if not isinstance(document, dict) or document.get("$schema") != BACKUP_SCHEMA:
        return MaintenanceResult(False, f"Not a {BACKUP_SCHEMA} file", path=path)
    tables = document.get("tables")
    if not isinstance(tables, dict):
        return MaintenanceResult(False, "Backup has no tables", path=path)

    restored_tables = 0
    restored_records = 0
    try:
        for key, records in tables.items():
            if not isinstance(records, list):
                logger.warning("backup_table_skipped", table=key)
                continue
            namespace, _, table = key.rpartition("/")
            rows = [r for r in records if isinstance(r, dict)]
            store.replace_all(table, rows, namespace=namespace or None)
            restored_tables += 1
            restored_records += len(rows)
    except (PersistenceError, ValueError) as e:
        logger.error("restore_failed", path=str(path), error=str(e))
        return MaintenanceResult(False, f"Restore failed: {e}", path=path)

    logger.info("backup_restored", path=str(path), tables=restored_tables)
    return MaintenanceResult(
        True,
        f"Restored {restored_tables} tables from {path}",
        path=path,
        tables=restored_tables,
        records=restored_records,
    )


def reset_user_data(store: RecordStore, username: str) -> MaintenanceResult:
    """Delete every scoped table of one user (the account itself stays)."""
    try:
        removed = store.drop_namespace(username)
    except (PersistenceError, ValueError) as e:
        return MaintenanceResult(False, f"Reset failed: {e}")
    logger.info("user_data_reset", username=username, tables=removed)
    return MaintenanceResult(True, f"Removed {removed} tables of {username}", tables=removed)


def reset_all(store: RecordStore) -> MaintenanceResult:
    """Delete every table, the user directory included."""
    removed = 0
    try:
        for table in store.tables():
            store.clear(table, namespace=None)
            removed += 1
        for namespace in store.namespaces():
            removed += store.drop_namespace(namespace)
    except PersistenceError as e:
        return MaintenanceResult(False, f"Reset failed: {e}", tables=removed)
    logger.warning("database_reset", tables=removed)
    return MaintenanceResult(True, f"Removed {removed} tables", tables=removed)
