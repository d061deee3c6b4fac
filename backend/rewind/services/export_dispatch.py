"""
Export dispatch: resolve a request to an artifact or a job.

For a canonical request the engine either serves an existing artifact,
requeues one whose file vanished, attaches to an in-flight job, or creates a
new job and wakes the encoder workers. The caller then follows the returned
export id on the status channel.
"""
import os
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import structlog

from rewind.models import Clip
from rewind.services.export_admin import DEFAULT_STALE_MINUTES, recover_interrupted
from rewind.services.export_spec import canonicalize, reuse_fingerprint
from rewind.services.export_store import ExportStore
from rewind.services.notifier import WorkerNotifier
from rewind.services.storage_governor import run_governor_pass

logger = structlog.get_logger()

ACTION_REUSED = "reused"
ACTION_REQUEUED = "requeued"
ACTION_ATTACHED = "attached"
ACTION_CREATED = "created"


class ClipNotFound(LookupError):
    pass


@dataclass
class ExportRequestFields:
    format: str = ""
    quality: str = ""
    filters: Optional[Iterable[Any]] = None
    variant: str = ""


@dataclass
class DispatchOutcome:
    export_id: str
    clip_id: int
    action: str
    download_url: str = ""

    @property
    def is_ready(self) -> bool:
        return self.action == ACTION_REUSED


def download_url_for(export_id: str) -> str:
    return f"/api/clip-exports/{export_id}/download"


def artifact_exists(path: Optional[str]) -> bool:
    return bool(path) and os.path.isfile(path)


def dispatch_export(
    store: ExportStore,
    notifier: WorkerNotifier,
    clip: Optional[Clip],
    user_id: int,
    request: ExportRequestFields,
    stale_minutes: int = DEFAULT_STALE_MINUTES,
) -> DispatchOutcome:
    if clip is None:
        raise ClipNotFound("clip not found")

    # Raises InvalidExportSpec before anything is written.
    canonical = canonicalize(request.format, request.quality, request.filters, request.variant)
    fp = reuse_fingerprint(canonical, clip_id=clip.id, created_by=user_id, clip_updated_at=clip.updated_at)

    hit = store.find_reusable(fp)
    if hit is not None:
        hit_id, hit_path = hit.id, hit.file_path
        if artifact_exists(hit_path):
            store.touch_accessed(hit_id)
            run_governor_pass(store)
            logger.info("export.reused", export_id=hit_id, clip_id=clip.id)
            return DispatchOutcome(
                export_id=hit_id,
                clip_id=clip.id,
                action=ACTION_REUSED,
                download_url=download_url_for(hit_id),
            )

        logger.warning("export.reusable_file_missing", export_id=hit_id, file_path=hit_path)
        pending_id = store.requeue(hit_id)
        if pending_id is not None:
            notifier.notify(pending_id)
            return DispatchOutcome(export_id=pending_id, clip_id=clip.id, action=ACTION_REQUEUED)

    # Free pending slots held by workers that stopped reporting.
    recover_interrupted(store, notifier, stale_minutes)
    pending, created = store.find_or_create_pending(fp)
    if not created:
        logger.info("export.attached", export_id=pending.id, clip_id=clip.id)
        return DispatchOutcome(export_id=pending.id, clip_id=clip.id, action=ACTION_ATTACHED)

    notifier.notify(pending.id)
    return DispatchOutcome(export_id=pending.id, clip_id=clip.id, action=ACTION_CREATED)
