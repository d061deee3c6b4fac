"""
Rebuild export badges for a list of clips.

When the clip list is re-rendered wholesale its export badges come back
blank; hydration looks up every live export for those clips in one query and
produces one badge per clip.
"""
from typing import Dict, Iterable, List

import structlog

from rewind.models import ClipExport
from rewind.models.export import STATUS_PROCESSING, STATUS_QUEUED, STATUS_READY
from rewind.services.export_admin import DEFAULT_STALE_MINUTES, recover_interrupted
from rewind.services.export_dispatch import artifact_exists
from rewind.services.export_status import StatusEvent, processing_text, queued_event, ready_event
from rewind.services.export_store import ExportStore
from rewind.services.notifier import WorkerNotifier

logger = structlog.get_logger()

# processing beats ready beats queued
_PRECEDENCE = {STATUS_PROCESSING: 2, STATUS_READY: 1, STATUS_QUEUED: 0}


def pick_badge_exports(exports: Iterable[ClipExport]) -> Dict[int, ClipExport]:
    """One export per clip. Within a precedence level the first row seen wins."""
    chosen: Dict[int, ClipExport] = {}
    for export in exports:
        rank = _PRECEDENCE.get(export.status)
        if rank is None:
            continue
        current = chosen.get(export.clip_id)
        if current is None or rank > _PRECEDENCE[current.status]:
            chosen[export.clip_id] = export
    return chosen


def hydrate(
    store: ExportStore,
    notifier: WorkerNotifier,
    clip_ids: Iterable[int],
    stale_minutes: int = DEFAULT_STALE_MINUTES,
) -> List[StatusEvent]:
    ids = list(dict.fromkeys(clip_ids))
    if not ids:
        return []

    recover_interrupted(store, notifier, stale_minutes)

    chosen = pick_badge_exports(store.list_active_for_clips(ids))
    # Snapshot before any requeue commits and expires the loaded rows.
    badges = [
        (clip_id, chosen[clip_id].id, chosen[clip_id].status, chosen[clip_id].progress_pct, chosen[clip_id].file_path)
        for clip_id in ids
        if clip_id in chosen
    ]

    events: List[StatusEvent] = []
    for clip_id, export_id, status, progress_pct, file_path in badges:
        if status == STATUS_PROCESSING:
            events.append(StatusEvent(clip_id=clip_id, text=processing_text(progress_pct), state=STATUS_PROCESSING))
        elif status == STATUS_QUEUED:
            events.append(queued_event(clip_id))
        elif artifact_exists(file_path):
            events.append(ready_event(clip_id, export_id))
        else:
            logger.warning("export.hydrate_file_missing", export_id=export_id, file_path=file_path)
            pending_id = store.requeue(export_id)
            if pending_id is not None:
                notifier.notify(pending_id)
    return events
