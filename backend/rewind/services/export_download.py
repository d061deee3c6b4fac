"""
Serving finished exports.

A download is only handed out for a ready row whose artifact is still on
disk. If the file vanished the row is sent back to the queue and the workers
are woken, so the next export request picks up a fresh render.
"""
import mimetypes
from dataclasses import dataclass

import structlog

from rewind.models.export import STATUS_READY
from rewind.services.export_dispatch import artifact_exists
from rewind.services.export_store import ExportStore
from rewind.services.filenames import crop_display_name, export_download_name
from rewind.services.notifier import WorkerNotifier
from rewind.services.storage_governor import run_governor_pass

logger = structlog.get_logger()

FILE_MISSING_MESSAGE = "Export file was missing. It has been re-queued. Please try exporting again."


class ExportNotFound(LookupError):
    pass


class ExportNotReady(RuntimeError):
    pass


class ExportFileMissing(RuntimeError):
    def __init__(self, export_id: str, requeued_id: str = ""):
        super().__init__(FILE_MISSING_MESSAGE)
        self.export_id = export_id
        self.requeued_id = requeued_id


@dataclass
class DownloadTicket:
    export_id: str
    path: str
    filename: str
    media_type: str


def media_type_for(fmt: str) -> str:
    media_type, _ = mimetypes.guess_type(f"artifact.{fmt}")
    return media_type or "application/octet-stream"


def prepare_download(store: ExportStore, notifier: WorkerNotifier, export_id: str) -> DownloadTicket:
    record = store.get_for_download(export_id)
    if record is None:
        raise ExportNotFound(export_id)

    export = record.export
    if export.status != STATUS_READY:
        raise ExportNotReady(export.status)

    fmt, variant, path = export.format, export.variant, export.file_path
    if not artifact_exists(path):
        logger.warning("export.download_file_missing", export_id=export_id, file_path=path)
        requeued_id = store.requeue(export_id) or ""
        if requeued_id:
            notifier.notify(requeued_id)
        raise ExportFileMissing(export_id, requeued_id)

    crop_name = ""
    if variant.startswith("crop:"):
        crop_name = crop_display_name(record.crops, variant[len("crop:"):])

    filename = export_download_name(record.clip_title, variant, crop_name, export_id, fmt)

    store.touch_accessed(export_id)
    run_governor_pass(store)

    return DownloadTicket(export_id=export_id, path=path, filename=filename, media_type=media_type_for(fmt))
