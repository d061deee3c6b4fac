import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rewind.api.deps import get_notifier
from rewind.api.routes import admin_exports, clip_exports, health
from rewind.core.config import get_settings
from rewind.db.session import get_sessionmaker, init_db
from rewind.services.export_admin import recover_interrupted
from rewind.services.export_store import ExportStore

settings = get_settings()

# Basic structured logging to stdout for ops visibility
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = structlog.get_logger()


def prepare_instance():
    """Create tables, seed instance settings and requeue work orphaned by a restart."""
    init_db()
    Path(settings.export_root).mkdir(parents=True, exist_ok=True)
    db = get_sessionmaker()()
    try:
        store = ExportStore(db)
        store.ensure_instance_settings(settings.default_export_storage_limit_bytes)
        recovered = recover_interrupted(store, get_notifier(), settings.export_stale_minutes)
        logger.info("startup.complete", recovered_exports=len(recovered))
    finally:
        db.close()


@asynccontextmanager
async def lifespan(_: FastAPI):
    prepare_instance()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(clip_exports.router, prefix="/api")
app.include_router(admin_exports.router)
