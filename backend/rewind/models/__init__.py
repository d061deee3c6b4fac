from rewind.models.user import User
from rewind.models.video import Video, Clip
from rewind.models.export import ClipExport
from rewind.models.instance_settings import InstanceSettings

__all__ = [
    "User",
    "Video",
    "Clip",
    "ClipExport",
    "InstanceSettings",
]
