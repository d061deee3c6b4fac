from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FilterSpecIn(BaseModel):
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ExportRequest(BaseModel):
    format: str = ""
    quality: str = ""
    filters: List[FilterSpecIn] = Field(default_factory=list)
    variant: str = ""


class ExportOut(BaseModel):
    id: str
    clip_id: int
    created_by: int
    format: str
    variant: str
    status: str
    progress_pct: int
    attempts: int
    file_path: str = ""
    size_bytes: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_accessed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdminExportRowOut(BaseModel):
    export: ExportOut
    spec: Dict[str, Any] = Field(default_factory=dict)
    clip_title: str
    video_id: int
    video_title: str

    model_config = ConfigDict(from_attributes=True)


class ExportStatsOut(BaseModel):
    queued: int = 0
    processing: int = 0
    ready: int = 0
    error: int = 0
    total_ready_bytes: int = 0
    storage_limit_bytes: int = 0

    model_config = ConfigDict(from_attributes=True)


class AdminExportListResponse(BaseModel):
    items: List[AdminExportRowOut]
    total: int
    page: int
    page_size: int
    stats: ExportStatsOut


class StorageLimitUpdate(BaseModel):
    limit_bytes: int = Field(ge=0)


class StorageLimitOut(BaseModel):
    limit_bytes: int
    total_ready_bytes: int


class AdminActionResult(BaseModel):
    ok: bool = True
    export_id: Optional[str] = None
    count: int = 0
    files_removed: int = 0
