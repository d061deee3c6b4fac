"""Pytest configuration and fixtures for backend tests."""

import os
from datetime import datetime

os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rewind.db.base import Base
from rewind.models import Clip, ClipExport, User, Video
from rewind.models.export import STATUS_READY
from rewind.services.export_spec import canonicalize, reuse_fingerprint
from rewind.services.export_store import ExportStore


class RecordingNotifier:
    """Stands in for the Redis channel; remembers every payload."""

    def __init__(self):
        self.payloads = []

    def notify(self, payload: str) -> None:
        self.payloads.append(payload)


def create_test_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


def write_artifact(directory, name: str, size: int) -> str:
    path = os.path.join(str(directory), name)
    with open(path, "wb") as fh:
        fh.write(b"\0" * size)
    return path


def add_export(
    session,
    clip,
    user,
    status: str = STATUS_READY,
    size_bytes: int = 0,
    file_path: str = "",
    last_accessed_at=None,
    variant: str = "full",
    fmt: str = "mp4",
    created_at=None,
    last_error=None,
) -> ClipExport:
    """Insert an export row directly, bypassing dispatch."""
    canonical = canonicalize(fmt, "", [], variant)
    fp = reuse_fingerprint(canonical, clip_id=clip.id, created_by=user.id, clip_updated_at=clip.updated_at)
    export = ClipExport(
        clip_id=clip.id,
        created_by=user.id,
        format=fp.format,
        variant=fp.variant,
        spec_blob=fp.spec_blob,
        spec_hash=fp.spec_hash,
        clip_updated_at=fp.clip_updated_at,
        status=status,
        size_bytes=size_bytes,
        file_path=file_path,
        last_accessed_at=last_accessed_at,
        last_error=last_error,
        created_at=created_at or datetime(2024, 1, 1),
    )
    session.add(export)
    session.commit()
    session.refresh(export)
    return export


@pytest.fixture
def db_engine():
    return create_test_engine()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session):
    return ExportStore(db_session)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def test_user(db_session):
    """Create a test user."""
    user = User(email="test@example.com", password_hash="hashed_password", name="Tester")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def other_user(db_session):
    user = User(email="other@example.com", password_hash="hashed_password")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    user = User(email="admin@example.com", password_hash="hashed_password", is_admin=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def video(db_session):
    video = Video(source_url="https://example.com/stream", video_path="/media/source.mp4", title="Stream VOD")
    db_session.add(video)
    db_session.commit()
    db_session.refresh(video)
    return video


@pytest.fixture
def clip(db_session, video):
    clip = Clip(
        video_id=video.id,
        start_ts=12.0,
        end_ts=42.5,
        title="Launch Recap",
        crops=[{"id": "sq", "name": "Square crop", "x": 0, "y": 0, "width": 720, "height": 720}],
        filter_stack=[],
        updated_at=datetime(2024, 1, 1, 12, 0, 0),
    )
    db_session.add(clip)
    db_session.commit()
    db_session.refresh(clip)
    return clip


@pytest.fixture
def second_clip(db_session, video):
    clip = Clip(video_id=video.id, start_ts=60.0, end_ts=75.0, title="Second", crops=[], filter_stack=[])
    db_session.add(clip)
    db_session.commit()
    db_session.refresh(clip)
    return clip
