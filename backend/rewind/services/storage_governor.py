"""
LRU storage governor for ready export artifacts.

A pass reads the instance byte budget and, when the ready artifacts add up
to more than that, deletes the least recently accessed ones until enough has
been freed. The most recently accessed artifact is never evicted, so a
single artifact larger than the whole budget stays usable.

Passes run after a successful download and after an artifact is marked
ready. They are best-effort: per-row failures are logged and the pass moves
on; a file that is already gone counts as removed.
"""
import os
from dataclasses import dataclass, field
from typing import List

import structlog
from sqlalchemy.exc import SQLAlchemyError

from rewind.services.export_store import ExportStore

logger = structlog.get_logger()


@dataclass
class GovernorReport:
    budget: int = 0
    total_before: int = 0
    freed: int = 0
    evicted_ids: List[str] = field(default_factory=list)


def remove_artifact(path: str) -> bool:
    """Unlink an artifact; a missing file is not an error. Returns True if a file was removed."""
    if not path:
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("governor.unlink_failed", path=path, error=str(e))
        return False
    return True


def run_governor_pass(store: ExportStore) -> GovernorReport:
    budget = store.get_storage_limit()
    report = GovernorReport(budget=budget)
    if budget <= 0:
        return report

    total = store.total_ready_bytes()
    report.total_before = total
    if total <= budget:
        return report

    need = total - budget
    # Snapshot before the per-row commits expire the loaded rows; other
    # passes may delete them concurrently.
    candidates = [(e.id, e.file_path, e.size_bytes or 0) for e in store.list_oldest_for_cleanup()]
    if len(candidates) < 2:
        return report

    protected_id = candidates[-1][0]

    for export_id, path, size in candidates:
        if report.freed >= need:
            break
        if export_id == protected_id:
            continue
        remove_artifact(path)
        try:
            deleted = store.delete(export_id)
        except SQLAlchemyError as e:
            store.db.rollback()
            logger.warning("governor.delete_failed", export_id=export_id, error=str(e))
            continue
        if not deleted:
            continue
        report.freed += size
        report.evicted_ids.append(export_id)
        logger.info("governor.evicted", export_id=export_id, size_bytes=size)

    logger.info(
        "governor.pass_complete",
        budget=budget,
        total_before=total,
        freed=report.freed,
        evicted=len(report.evicted_ids),
    )
    return report


def finish_export_ready(store: ExportStore, export_id: str, file_path: str, size_bytes: int) -> GovernorReport:
    """Mark an export ready and enforce the budget now that it counts."""
    store.mark_ready(export_id, file_path, size_bytes)
    return run_governor_pass(store)
