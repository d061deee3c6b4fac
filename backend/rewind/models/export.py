from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, LargeBinary, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rewind.db.base import Base
from rewind.models.common import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover
    from rewind.models.video import Clip


STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_READY = "ready"
STATUS_ERROR = "error"

EXPORT_STATUSES = (STATUS_QUEUED, STATUS_PROCESSING, STATUS_READY, STATUS_ERROR)
PENDING_STATUSES = (STATUS_QUEUED, STATUS_PROCESSING)
ACTIVE_STATUSES = (STATUS_QUEUED, STATUS_PROCESSING, STATUS_READY)

_PENDING_SQL = "status IN ('queued', 'processing')"


def _new_export_id() -> str:
    return str(uuid.uuid4())


class ClipExport(Base, TimestampMixin):
    __tablename__ = "clip_exports"
    __table_args__ = (
        # At most one in-flight row per pending fingerprint.
        Index(
            "uq_clip_exports_pending",
            "clip_id",
            "created_by",
            "format",
            "variant",
            "spec_hash",
            unique=True,
            sqlite_where=text(_PENDING_SQL),
            postgresql_where=text(_PENDING_SQL),
        ),
        Index("ix_clip_exports_lru", "last_accessed_at", "created_at"),
        Index("ix_clip_exports_queue", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_export_id)
    clip_id: Mapped[int] = mapped_column(ForeignKey("clips.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    format: Mapped[str] = mapped_column(String(16), default="mp4", nullable=False)
    variant: Mapped[str] = mapped_column(String(255), default="full", nullable=False)
    spec_blob: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    spec_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    clip_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), default=STATUS_QUEUED, nullable=False)
    progress_pct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, default="", nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    locked_by: Mapped[Optional[str]] = mapped_column(String(255))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    clip: Mapped["Clip"] = relationship("Clip", back_populates="exports")
