from sqlalchemy import JSON, Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from rewind.db.base import Base
from rewind.models.common import TimestampMixin


class Video(Base, TimestampMixin):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, index=True)
    source_url = Column(String)
    video_path = Column(String)
    title = Column(String)
    duration_seconds = Column(Float)

    clips = relationship("Clip", back_populates="video", cascade="all, delete-orphan")


class Clip(Base, TimestampMixin):
    """A (start_ts, end_ts) slice of a video plus its edit metadata.

    Owned by the clip editor; the export pipeline only reads it. Any edit bumps
    ``updated_at``, which invalidates previously rendered exports.
    """

    __tablename__ = "clips"

    id = Column(Integer, primary_key=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    start_ts = Column(Float, nullable=False)
    end_ts = Column(Float, nullable=False)
    title = Column(String)
    crops = Column(JSON, default=list)  # [{"id", "name", "x", "y", "width", "height"}]
    filter_stack = Column(JSON, default=list)  # [{"type", "params"}]

    video = relationship("Video", back_populates="clips")
    exports = relationship("ClipExport", back_populates="clip", cascade="all, delete-orphan")
