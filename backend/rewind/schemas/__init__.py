from rewind.schemas.export import (
    AdminActionResult,
    AdminExportListResponse,
    AdminExportRowOut,
    ExportOut,
    ExportRequest,
    ExportStatsOut,
    FilterSpecIn,
    StorageLimitOut,
    StorageLimitUpdate,
)
