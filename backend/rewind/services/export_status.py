"""
Live export status channel.

Each connection runs one cooperative task: poll the export row, emit a badge
update when what the user would see changes, sleep, repeat. The stream ends
on ``ready`` (with an instruction to start the download), on ``error``, when
the row disappears, or as soon as the client goes away. Disconnecting never
touches the store; the encoder keeps going and its artifact stays reusable.
"""
import asyncio
import json
from dataclasses import asdict, dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from rewind.models.export import STATUS_ERROR, STATUS_PROCESSING, STATUS_QUEUED, STATUS_READY
from rewind.services.export_dispatch import download_url_for
from rewind.services.export_store import ExportStore

logger = structlog.get_logger()

DEFAULT_POLL_INTERVAL = 0.5
EXPORT_FAILED_TEXT = "Export failed"
EXPORT_NOT_FOUND_TEXT = "Export not found"
QUEUED_TEXT = "Queued…"


def status_element_id(clip_id) -> str:
    return f"clip-export-status-{clip_id}"


@dataclass(frozen=True)
class StatusEvent:
    clip_id: int
    text: str
    state: str
    download_url: str = ""
    navigate_to: str = ""

    @property
    def element_id(self) -> str:
        return status_element_id(self.clip_id)

    @property
    def is_terminal(self) -> bool:
        return self.state in (STATUS_READY, STATUS_ERROR)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["element_id"] = self.element_id
        data.pop("navigate_to")
        return data


@dataclass(frozen=True)
class ExportSnapshot:
    id: str
    clip_id: int
    status: str
    progress_pct: int
    file_path: str
    last_error: Optional[str]


def queued_event(clip_id: int) -> StatusEvent:
    return StatusEvent(clip_id=clip_id, text=QUEUED_TEXT, state=STATUS_QUEUED)


def processing_text(progress_pct: int) -> str:
    return f"Exporting {int(progress_pct or 0)}%…"


def ready_event(clip_id: int, export_id: str, navigate: bool = False) -> StatusEvent:
    url = download_url_for(export_id)
    return StatusEvent(
        clip_id=clip_id,
        text="",
        state=STATUS_READY,
        download_url=url,
        navigate_to=url if navigate else "",
    )


def event_for_snapshot(snapshot: ExportSnapshot, clip_id: int) -> StatusEvent:
    if snapshot.status == STATUS_PROCESSING:
        return StatusEvent(clip_id=clip_id, text=processing_text(snapshot.progress_pct), state=STATUS_PROCESSING)
    if snapshot.status == STATUS_READY:
        return ready_event(clip_id, snapshot.id, navigate=True)
    if snapshot.status == STATUS_ERROR:
        return StatusEvent(clip_id=clip_id, text=snapshot.last_error or EXPORT_FAILED_TEXT, state=STATUS_ERROR)
    return queued_event(clip_id)


def load_snapshot(session_factory: Callable[[], Session], export_id: str) -> Optional[ExportSnapshot]:
    db = session_factory()
    try:
        export = ExportStore(db).get(export_id)
        if export is None:
            return None
        return ExportSnapshot(
            id=export.id,
            clip_id=export.clip_id,
            status=export.status,
            progress_pct=export.progress_pct or 0,
            file_path=export.file_path or "",
            last_error=export.last_error,
        )
    finally:
        db.close()


async def watch_export(
    session_factory: Callable[[], Session],
    export_id: str,
    clip_id: int,
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    announce: Optional[StatusEvent] = None,
) -> AsyncIterator[StatusEvent]:
    """
    Yield status events for one export until it reaches a terminal state.

    ``announce`` is emitted before the first poll (e.g. "Queued…" for a job
    that was just created) and counts as the previously seen state, so an
    identical first poll is suppressed.
    """
    last: Optional[StatusEvent] = None
    if announce is not None:
        yield announce
        last = announce
        if announce.is_terminal:
            return

    while True:
        if await is_disconnected():
            logger.info("export_status.client_gone", export_id=export_id)
            return

        snapshot = await run_in_threadpool(load_snapshot, session_factory, export_id)
        if snapshot is None:
            yield StatusEvent(clip_id=clip_id, text=EXPORT_NOT_FOUND_TEXT, state=STATUS_ERROR)
            return

        event = event_for_snapshot(snapshot, clip_id)
        if event != last:
            yield event
            last = event
        if event.is_terminal:
            return

        await asyncio.sleep(poll_interval)


def format_sse(event: StatusEvent) -> str:
    """Render an event as SSE frames; a ready event also carries the download redirect."""
    frames = [f"event: export-status\ndata: {json.dumps(event.to_dict())}\n\n"]
    if event.navigate_to:
        frames.append(f"event: navigate\ndata: {json.dumps({'url': event.navigate_to})}\n\n")
    return "".join(frames)


async def stream_sse(events: AsyncIterator[StatusEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)
