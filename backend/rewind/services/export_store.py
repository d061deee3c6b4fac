"""
Durable record of every clip export.

``ExportStore`` wraps a SQLAlchemy session and is the only code that reads or
writes ``clip_exports`` rows. Each mutating call commits on its own so that a
status flip and the columns that go with it (file path, size, error) land in
one statement and are observed together by pollers.

Two operations are atomic with respect to competing requests:

- ``find_or_create_pending`` relies on the partial unique index over the
  pending fingerprint; a losing insert collapses onto the winner's row.
- ``claim_next`` flips ``queued -> processing`` with a compare-and-set.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rewind.models import Clip, ClipExport, InstanceSettings, Video
from rewind.models.common import utcnow
from rewind.models.export import (
    ACTIVE_STATUSES,
    EXPORT_STATUSES,
    PENDING_STATUSES,
    STATUS_ERROR,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    STATUS_READY,
)
from rewind.models.instance_settings import INSTANCE_SETTINGS_ID
from rewind.services.export_spec import PendingFingerprint, ReuseFingerprint

logger = structlog.get_logger()


@dataclass
class DownloadRecord:
    export: ClipExport
    clip_title: str
    crops: list


@dataclass
class ExportStats:
    queued: int = 0
    processing: int = 0
    ready: int = 0
    error: int = 0
    total_ready_bytes: int = 0


@dataclass
class AdminExportRow:
    export: ClipExport
    clip_title: str
    video_id: int
    video_title: str


class ExportStore:
    def __init__(self, db: Session):
        self.db = db

    # -- lookups -----------------------------------------------------------

    def get(self, export_id: str) -> Optional[ClipExport]:
        return self.db.get(ClipExport, export_id)

    def get_for_download(self, export_id: str) -> Optional[DownloadRecord]:
        row = (
            self.db.query(ClipExport, Clip.title, Clip.crops)
            .join(Clip, Clip.id == ClipExport.clip_id)
            .filter(ClipExport.id == export_id)
            .first()
        )
        if row is None:
            return None
        export, title, crops = row
        return DownloadRecord(export=export, clip_title=title or "", crops=list(crops or []))

    def find_reusable(self, fp: ReuseFingerprint) -> Optional[ClipExport]:
        """Newest ready row for the full fingerprint, if any."""
        return (
            self.db.query(ClipExport)
            .filter(
                ClipExport.clip_id == fp.clip_id,
                ClipExport.created_by == fp.created_by,
                ClipExport.format == fp.format,
                ClipExport.variant == fp.variant,
                ClipExport.spec_hash == fp.spec_hash,
                ClipExport.spec_blob == fp.spec_blob,
                ClipExport.clip_updated_at == fp.clip_updated_at,
                ClipExport.status == STATUS_READY,
            )
            .order_by(ClipExport.created_at.desc())
            .first()
        )

    def find_pending(self, fp: PendingFingerprint) -> Optional[ClipExport]:
        return (
            self.db.query(ClipExport)
            .filter(
                ClipExport.clip_id == fp.clip_id,
                ClipExport.created_by == fp.created_by,
                ClipExport.format == fp.format,
                ClipExport.variant == fp.variant,
                ClipExport.spec_hash == fp.spec_hash,
                ClipExport.status.in_(PENDING_STATUSES),
            )
            .order_by(ClipExport.created_at.desc())
            .first()
        )

    def list_active_for_clips(self, clip_ids: Sequence[int]) -> List[ClipExport]:
        if not clip_ids:
            return []
        return (
            self.db.query(ClipExport)
            .filter(ClipExport.clip_id.in_(list(clip_ids)), ClipExport.status.in_(ACTIVE_STATUSES))
            .order_by(ClipExport.clip_id, ClipExport.created_at.desc())
            .all()
        )

    def list_oldest_for_cleanup(self) -> List[ClipExport]:
        """Ready rows, least recently accessed first (never-accessed rows lead)."""
        return (
            self.db.query(ClipExport)
            .filter(ClipExport.status == STATUS_READY)
            .order_by(ClipExport.last_accessed_at.asc().nullsfirst(), ClipExport.created_at.asc())
            .all()
        )

    def list_files_by_status(self, status: str) -> List[Tuple[str, str]]:
        rows = (
            self.db.query(ClipExport.id, ClipExport.file_path)
            .filter(ClipExport.status == status, ClipExport.file_path != "")
            .all()
        )
        return [(export_id, path) for export_id, path in rows]

    def total_ready_bytes(self) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(ClipExport.size_bytes), 0))
            .filter(ClipExport.status == STATUS_READY)
            .scalar()
        )
        return int(total or 0)

    # -- creation ----------------------------------------------------------

    def _new_row(self, fp: ReuseFingerprint) -> ClipExport:
        now = utcnow()
        return ClipExport(
            clip_id=fp.clip_id,
            created_by=fp.created_by,
            format=fp.format,
            variant=fp.variant,
            spec_blob=fp.spec_blob,
            spec_hash=fp.spec_hash,
            clip_updated_at=fp.clip_updated_at,
            status=STATUS_QUEUED,
            progress_pct=0,
            attempts=0,
            file_path="",
            size_bytes=0,
            created_at=now,
            updated_at=now,
        )

    def create(self, fp: ReuseFingerprint) -> str:
        """Unconditional insert of a queued row; raises if the pending slot is taken."""
        export = self._new_row(fp)
        self.db.add(export)
        self.db.commit()
        logger.info("export.created", export_id=export.id, clip_id=fp.clip_id, variant=fp.variant)
        return export.id

    def find_or_create_pending(self, fp: ReuseFingerprint) -> Tuple[ClipExport, bool]:
        """Return the in-flight row for the pending fingerprint, creating it if absent.

        Concurrent callers all end up with the same row; only the caller whose
        insert won sees ``created=True``.
        """
        existing = self.find_pending(fp.pending)
        if existing is not None:
            return existing, False

        export = self._new_row(fp)
        self.db.add(export)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_pending(fp.pending)
            if existing is None:
                raise
            logger.info("export.pending_coalesced", export_id=existing.id, clip_id=fp.clip_id)
            return existing, False

        logger.info("export.created", export_id=export.id, clip_id=fp.clip_id, variant=fp.variant)
        return export, True

    # -- worker-side transitions --------------------------------------------

    def _update(self, export_id: str, values: Dict) -> bool:
        values.setdefault("updated_at", utcnow())
        count = (
            self.db.query(ClipExport)
            .filter(ClipExport.id == export_id)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return count > 0

    def claim_next(self, worker_id: str) -> Optional[ClipExport]:
        """Flip the oldest queued row to processing for ``worker_id``."""
        while True:
            candidate = (
                self.db.query(ClipExport.id)
                .filter(ClipExport.status == STATUS_QUEUED)
                .order_by(ClipExport.created_at.asc())
                .first()
            )
            if candidate is None:
                return None
            now = utcnow()
            count = (
                self.db.query(ClipExport)
                .filter(ClipExport.id == candidate.id, ClipExport.status == STATUS_QUEUED)
                .update(
                    {
                        "status": STATUS_PROCESSING,
                        "locked_by": worker_id,
                        "started_at": now,
                        "progress_pct": 0,
                        "attempts": ClipExport.attempts + 1,
                        "updated_at": now,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if count:
                logger.info("export.claimed", export_id=candidate.id, worker_id=worker_id)
                return self.get(candidate.id)

    def update_progress(self, export_id: str, pct: int) -> bool:
        pct = max(0, min(100, int(pct)))
        return self._update(export_id, {"progress_pct": pct})

    def mark_ready(self, export_id: str, file_path: str, size_bytes: int) -> bool:
        if not file_path:
            raise ValueError("ready exports need a file path")
        if not os.path.exists(file_path):
            raise ValueError(f"export artifact does not exist: {file_path}")
        now = utcnow()
        updated = self._update(
            export_id,
            {
                "status": STATUS_READY,
                "file_path": file_path,
                "size_bytes": int(size_bytes),
                "progress_pct": 100,
                "last_error": None,
                "locked_by": None,
                "finished_at": now,
                "last_accessed_at": now,
                "updated_at": now,
            },
        )
        if updated:
            logger.info("export.ready", export_id=export_id, size_bytes=size_bytes)
        return updated

    def mark_error(self, export_id: str, message: str) -> bool:
        updated = self._update(
            export_id,
            {
                "status": STATUS_ERROR,
                "last_error": message,
                "locked_by": None,
                "finished_at": utcnow(),
            },
        )
        if updated:
            logger.warning("export.failed", export_id=export_id, error=message)
        return updated

    def increment_attempts(self, export_id: str) -> bool:
        return self._update(export_id, {"attempts": ClipExport.attempts + 1})

    def touch_accessed(self, export_id: str) -> bool:
        return self._update(export_id, {"last_accessed_at": utcnow()})

    # -- requeue / delete ----------------------------------------------------

    def requeue(self, export_id: str) -> Optional[str]:
        """
        Send a row back to ``queued`` and clear its artifact columns.

        Returns the id of the row that now holds the pending slot. That is
        normally ``export_id``; if another row with the same pending
        fingerprint is already in flight, this row is dropped in its favour.
        Returns None when the row does not exist.
        """
        export = self.get(export_id)
        if export is None:
            return None
        try:
            self._update(
                export_id,
                {
                    "status": STATUS_QUEUED,
                    "file_path": "",
                    "size_bytes": 0,
                    "last_error": None,
                    "progress_pct": 0,
                    "locked_by": None,
                    "started_at": None,
                    "finished_at": None,
                    "attempts": ClipExport.attempts + 1,
                },
            )
        except IntegrityError:
            self.db.rollback()
            export = self.get(export_id)
            if export is None:
                return None
            existing = self.find_pending(
                PendingFingerprint(
                    clip_id=export.clip_id,
                    created_by=export.created_by,
                    format=export.format,
                    variant=export.variant,
                    spec_blob=export.spec_blob,
                )
            )
            if existing is None:
                raise
            self.delete(export_id)
            logger.info("export.requeue_collapsed", export_id=export_id, pending_id=existing.id)
            return existing.id
        logger.info("export.requeued", export_id=export_id)
        return export_id

    def requeue_all_errors(self) -> int:
        ids = [row.id for row in self.db.query(ClipExport.id).filter(ClipExport.status == STATUS_ERROR).all()]
        for export_id in ids:
            self.requeue(export_id)
        return len(ids)

    def reset_stale_processing(self, older_than: datetime) -> List[str]:
        """Return processing rows not updated since ``older_than`` to the queue."""
        ids = [
            row.id
            for row in self.db.query(ClipExport.id)
            .filter(ClipExport.status == STATUS_PROCESSING, ClipExport.updated_at < older_than)
            .all()
        ]
        if not ids:
            return []
        (
            self.db.query(ClipExport)
            .filter(ClipExport.id.in_(ids), ClipExport.status == STATUS_PROCESSING)
            .update(
                {
                    "status": STATUS_QUEUED,
                    "locked_by": None,
                    "progress_pct": 0,
                    "updated_at": utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return ids

    def delete(self, export_id: str) -> bool:
        count = self.db.query(ClipExport).filter(ClipExport.id == export_id).delete(synchronize_session=False)
        self.db.commit()
        return count > 0

    def delete_by_status(self, status: str) -> int:
        if status not in EXPORT_STATUSES:
            raise ValueError(f"unknown export status: {status}")
        count = self.db.query(ClipExport).filter(ClipExport.status == status).delete(synchronize_session=False)
        self.db.commit()
        return count

    def delete_all(self) -> int:
        count = self.db.query(ClipExport).delete(synchronize_session=False)
        self.db.commit()
        return count

    # -- instance settings --------------------------------------------------

    def get_storage_limit(self) -> int:
        row = self.db.get(InstanceSettings, INSTANCE_SETTINGS_ID)
        if row is None:
            return 0
        return int(row.clip_export_storage_limit_bytes or 0)

    def set_storage_limit(self, limit_bytes: int) -> int:
        row = self.db.get(InstanceSettings, INSTANCE_SETTINGS_ID)
        if row is None:
            row = InstanceSettings(id=INSTANCE_SETTINGS_ID)
            self.db.add(row)
        row.clip_export_storage_limit_bytes = int(limit_bytes)
        self.db.commit()
        return row.clip_export_storage_limit_bytes

    def ensure_instance_settings(self, default_limit_bytes: int = 0) -> None:
        if self.db.get(InstanceSettings, INSTANCE_SETTINGS_ID) is None:
            self.db.add(
                InstanceSettings(id=INSTANCE_SETTINGS_ID, clip_export_storage_limit_bytes=default_limit_bytes)
            )
            self.db.commit()

    # -- admin --------------------------------------------------------------

    def stats(self) -> ExportStats:
        stats = ExportStats()
        rows = self.db.query(ClipExport.status, func.count(ClipExport.id)).group_by(ClipExport.status).all()
        for status, count in rows:
            if status in EXPORT_STATUSES:
                setattr(stats, status, int(count))
        stats.total_ready_bytes = self.total_ready_bytes()
        return stats

    def count(self) -> int:
        return self.db.query(func.count(ClipExport.id)).scalar() or 0

    def list_for_admin(self, limit: int = 50, offset: int = 0) -> List[AdminExportRow]:
        rows = (
            self.db.query(ClipExport, Clip.title, Video.id, Video.title)
            .join(Clip, Clip.id == ClipExport.clip_id)
            .join(Video, Video.id == Clip.video_id)
            .order_by(ClipExport.created_at.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return [
            AdminExportRow(export=export, clip_title=clip_title or "", video_id=video_id, video_title=video_title or "")
            for export, clip_title, video_id, video_title in rows
        ]
