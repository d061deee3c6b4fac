from fastapi import APIRouter, Depends, HTTPException, Query

from rewind.api.deps import get_export_store, get_notifier, require_admin
from rewind.models import User
from rewind.schemas import (
    AdminActionResult,
    AdminExportListResponse,
    AdminExportRowOut,
    ExportOut,
    ExportStatsOut,
    StorageLimitOut,
    StorageLimitUpdate,
)
from rewind.services import export_admin
from rewind.services.export_spec import decode_spec
from rewind.services.export_store import ExportStore
from rewind.services.notifier import WorkerNotifier
from rewind.services.storage_governor import run_governor_pass

router = APIRouter(prefix="/admin/exports", tags=["admin-exports"])

PAGE_SIZE = 50


@router.get("", response_model=AdminExportListResponse)
def list_exports(
    page: int = Query(default=1, ge=1),
    store: ExportStore = Depends(get_export_store),
    _: User = Depends(require_admin),
):
    rows = store.list_for_admin(limit=PAGE_SIZE, offset=(page - 1) * PAGE_SIZE)
    stats = store.stats()
    return AdminExportListResponse(
        items=[
            AdminExportRowOut(
                export=ExportOut.model_validate(row.export),
                spec=decode_spec(row.export.spec_blob).to_dict(),
                clip_title=row.clip_title,
                video_id=row.video_id,
                video_title=row.video_title,
            )
            for row in rows
        ],
        total=store.count(),
        page=page,
        page_size=PAGE_SIZE,
        stats=ExportStatsOut(
            queued=stats.queued,
            processing=stats.processing,
            ready=stats.ready,
            error=stats.error,
            total_ready_bytes=stats.total_ready_bytes,
            storage_limit_bytes=store.get_storage_limit(),
        ),
    )


@router.get("/storage-limit", response_model=StorageLimitOut)
def get_storage_limit(store: ExportStore = Depends(get_export_store), _: User = Depends(require_admin)):
    return StorageLimitOut(limit_bytes=store.get_storage_limit(), total_ready_bytes=store.total_ready_bytes())


@router.put("/storage-limit", response_model=StorageLimitOut)
def update_storage_limit(
    payload: StorageLimitUpdate,
    store: ExportStore = Depends(get_export_store),
    _: User = Depends(require_admin),
):
    store.set_storage_limit(payload.limit_bytes)
    # A lowered budget takes effect immediately.
    run_governor_pass(store)
    return StorageLimitOut(limit_bytes=store.get_storage_limit(), total_ready_bytes=store.total_ready_bytes())


@router.post("/requeue-errors", response_model=AdminActionResult)
def requeue_errors(
    store: ExportStore = Depends(get_export_store),
    notifier: WorkerNotifier = Depends(get_notifier),
    _: User = Depends(require_admin),
):
    count = export_admin.requeue_all_errors(store, notifier)
    return AdminActionResult(count=count)


@router.post("/delete-all", response_model=AdminActionResult)
def delete_all(store: ExportStore = Depends(get_export_store), _: User = Depends(require_admin)):
    files_removed = export_admin.delete_all(store)
    return AdminActionResult(files_removed=files_removed)


@router.post("/delete-by-status/{status}", response_model=AdminActionResult)
def delete_by_status(
    status: str,
    store: ExportStore = Depends(get_export_store),
    _: User = Depends(require_admin),
):
    try:
        result = export_admin.delete_by_status(store, status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AdminActionResult(count=result.rows_deleted, files_removed=result.files_removed)


@router.post("/{export_id}/delete", response_model=AdminActionResult)
def delete_export(
    export_id: str,
    store: ExportStore = Depends(get_export_store),
    _: User = Depends(require_admin),
):
    if not export_admin.delete_one(store, export_id):
        raise HTTPException(status_code=404, detail="Export not found")
    return AdminActionResult(export_id=export_id, count=1)


@router.post("/{export_id}/requeue", response_model=AdminActionResult)
def requeue_export(
    export_id: str,
    store: ExportStore = Depends(get_export_store),
    notifier: WorkerNotifier = Depends(get_notifier),
    _: User = Depends(require_admin),
):
    pending_id = export_admin.requeue_one(store, notifier, export_id)
    if pending_id is None:
        raise HTTPException(status_code=404, detail="Export not found")
    return AdminActionResult(export_id=pending_id, count=1)
