from typing import Callable, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session

from rewind.api.deps import (
    ensure_export_access,
    get_current_user,
    get_db,
    get_export_store,
    get_notifier,
    get_session_factory,
)
from rewind.core.config import get_settings
from rewind.models import Clip, User
from rewind.schemas import ExportRequest
from rewind.services.export_dispatch import (
    ACTION_CREATED,
    ACTION_REQUEUED,
    ClipNotFound,
    ExportRequestFields,
    dispatch_export,
)
from rewind.services.export_download import (
    ExportFileMissing,
    ExportNotFound,
    ExportNotReady,
    prepare_download,
)
from rewind.services.export_hydration import hydrate
from rewind.services.export_spec import InvalidExportSpec
from rewind.services.export_status import format_sse, queued_event, ready_event, stream_sse, watch_export
from rewind.services.export_store import ExportStore
from rewind.services.notifier import WorkerNotifier

router = APIRouter(tags=["clip-exports"])

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _status_stream(request: Request, session_factory: Callable[[], Session], export_id: str, clip_id: int, announce=None):
    events = watch_export(
        session_factory,
        export_id,
        clip_id,
        is_disconnected=request.is_disconnected,
        poll_interval=get_settings().export_poll_interval,
        announce=announce,
    )
    return StreamingResponse(stream_sse(events), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/clips/{clip_id}/export")
def create_clip_export(
    clip_id: int,
    request: Request,
    payload: Optional[ExportRequest] = Body(default=None),
    variant: str = Query(default="", description="Legacy variant selector, used when the body has none"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: WorkerNotifier = Depends(get_notifier),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    payload = payload or ExportRequest()
    fields = ExportRequestFields(
        format=payload.format,
        quality=payload.quality,
        filters=[f.model_dump() for f in payload.filters],
        variant=payload.variant or variant,
    )

    clip = db.query(Clip).filter(Clip.id == clip_id).first()
    try:
        outcome = dispatch_export(
            ExportStore(db), notifier, clip, current_user.id, fields, stale_minutes=get_settings().export_stale_minutes
        )
    except ClipNotFound:
        raise HTTPException(status_code=404, detail="Clip not found")
    except InvalidExportSpec as e:
        raise HTTPException(status_code=400, detail=str(e))

    announce = None
    if outcome.is_ready:
        announce = ready_event(outcome.clip_id, outcome.export_id)
    elif outcome.action in (ACTION_CREATED, ACTION_REQUEUED):
        announce = queued_event(outcome.clip_id)

    return _status_stream(request, session_factory, outcome.export_id, outcome.clip_id, announce=announce)


@router.get("/clip-exports/{export_id}/status")
def clip_export_status(
    export_id: str,
    request: Request,
    store: ExportStore = Depends(get_export_store),
    current_user: User = Depends(get_current_user),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    export = store.get(export_id)
    if export is None:
        raise HTTPException(status_code=404, detail="Export not found")
    ensure_export_access(export, current_user)
    return _status_stream(request, session_factory, export.id, export.clip_id)


@router.get("/clip-exports/{export_id}/download")
def download_clip_export(
    export_id: str,
    store: ExportStore = Depends(get_export_store),
    current_user: User = Depends(get_current_user),
    notifier: WorkerNotifier = Depends(get_notifier),
):
    export = store.get(export_id)
    if export is None:
        raise HTTPException(status_code=404, detail="Export not found")
    ensure_export_access(export, current_user)

    try:
        ticket = prepare_download(store, notifier, export_id)
    except ExportNotFound:
        raise HTTPException(status_code=404, detail="Export not found")
    except ExportNotReady:
        raise HTTPException(status_code=409, detail="Export is not ready")
    except ExportFileMissing as e:
        raise HTTPException(status_code=410, detail=str(e))

    return FileResponse(ticket.path, media_type=ticket.media_type, filename=ticket.filename)


@router.get("/videos/{video_id}/bank-export-status")
def bank_export_status(
    video_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: WorkerNotifier = Depends(get_notifier),
):
    clip_ids = [row.id for row in db.query(Clip.id).filter(Clip.video_id == video_id).order_by(Clip.start_ts).all()]
    if not clip_ids:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    events = hydrate(ExportStore(db), notifier, clip_ids, stale_minutes=get_settings().export_stale_minutes)
    if not events:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    body = "".join(format_sse(event) for event in events)
    return Response(content=body, media_type="text/event-stream", headers=SSE_HEADERS)
