from sqlalchemy import BigInteger, Column, Integer

from rewind.db.base import Base
from rewind.models.common import TimestampMixin

INSTANCE_SETTINGS_ID = 1


class InstanceSettings(Base, TimestampMixin):
    """Single-row table of instance-wide knobs editable by admins."""

    __tablename__ = "instance_settings"

    id = Column(Integer, primary_key=True)
    clip_export_storage_limit_bytes = Column(BigInteger, default=0, nullable=False)  # <= 0 means unlimited
