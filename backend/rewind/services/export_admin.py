"""
Operator actions on clip exports.

Every destructive action removes the artifact file before (or together with)
the row that owns it; a file that is already gone is fine.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

import structlog

from rewind.models.common import utcnow
from rewind.models.export import STATUS_ERROR, STATUS_QUEUED, STATUS_READY
from rewind.services.export_store import ExportStore
from rewind.services.notifier import REQUEUE_PULSE, WorkerNotifier
from rewind.services.storage_governor import remove_artifact

logger = structlog.get_logger()

ADMIN_DELETABLE_STATUSES = (STATUS_QUEUED, STATUS_READY, STATUS_ERROR)

DEFAULT_STALE_MINUTES = 5


@dataclass
class BulkDeleteResult:
    status: str
    rows_deleted: int
    files_removed: int


def delete_one(store: ExportStore, export_id: str) -> bool:
    export = store.get(export_id)
    if export is None:
        return False
    remove_artifact(export.file_path)
    deleted = store.delete(export_id)
    logger.info("admin.export_deleted", export_id=export_id)
    return deleted


def requeue_one(store: ExportStore, notifier: WorkerNotifier, export_id: str) -> Optional[str]:
    """Drop the artifact and send the row back to the queue. Returns the pending id."""
    export = store.get(export_id)
    if export is None:
        return None
    remove_artifact(export.file_path)
    pending_id = store.requeue(export_id)
    if pending_id is not None:
        notifier.notify(pending_id)
        logger.info("admin.export_requeued", export_id=export_id, pending_id=pending_id)
    return pending_id


def requeue_all_errors(store: ExportStore, notifier: WorkerNotifier) -> int:
    count = store.requeue_all_errors()
    if count:
        notifier.notify(REQUEUE_PULSE)
    logger.info("admin.errors_requeued", count=count)
    return count


def _remove_files(store: ExportStore, status: str) -> int:
    removed = 0
    for _, path in store.list_files_by_status(status):
        if remove_artifact(path):
            removed += 1
    return removed


def delete_by_status(store: ExportStore, status: str) -> BulkDeleteResult:
    if status not in ADMIN_DELETABLE_STATUSES:
        raise ValueError(f"cannot bulk delete exports with status {status!r}")

    files_removed = 0
    if status == STATUS_READY:
        files_removed = _remove_files(store, STATUS_READY)
    rows_deleted = store.delete_by_status(status)

    logger.info("admin.exports_deleted", status=status, rows=rows_deleted, files=files_removed)
    return BulkDeleteResult(status=status, rows_deleted=rows_deleted, files_removed=files_removed)


def delete_all(store: ExportStore) -> int:
    """Remove every export row; returns how many ready files were unlinked."""
    files_removed = _remove_files(store, STATUS_READY)
    rows_deleted = store.delete_all()
    logger.info("admin.exports_purged", rows=rows_deleted, files=files_removed)
    return files_removed


def recover_interrupted(
    store: ExportStore, notifier: WorkerNotifier, stale_minutes: int = DEFAULT_STALE_MINUTES
) -> List[str]:
    """Requeue processing rows whose worker stopped reporting, then wake the workers."""
    cutoff = utcnow() - timedelta(minutes=stale_minutes)
    ids = store.reset_stale_processing(cutoff)
    if ids:
        logger.warning("export.stale_processing_reset", count=len(ids))
        notifier.notify(REQUEUE_PULSE)
    return ids
