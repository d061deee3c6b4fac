"""
Tests for export dispatch.

Property (reuse): repeating an identical request against an unchanged clip
materialises exactly one artifact.
Property (freshness): after the clip is edited the next request does not
reuse the old artifact.
"""

import os
from datetime import datetime, timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from conftest import write_artifact
from rewind.models import ClipExport
from rewind.models.common import utcnow
from rewind.models.export import STATUS_PROCESSING, STATUS_QUEUED, STATUS_READY
from rewind.services.export_dispatch import (
    ACTION_ATTACHED,
    ACTION_CREATED,
    ACTION_REQUEUED,
    ACTION_REUSED,
    ClipNotFound,
    ExportRequestFields,
    dispatch_export,
    download_url_for,
)
from rewind.services.export_spec import InvalidExportSpec
from rewind.services.notifier import REQUEUE_PULSE
from rewind.services.storage_governor import finish_export_ready


def _finish(store, export_id, directory, size=64):
    """Play the encoder worker: claim the job and publish its artifact."""
    claimed = store.claim_next("worker-test")
    assert claimed is not None and claimed.id == export_id
    return finish_export_ready(store, export_id, write_artifact(directory, f"{export_id}.mp4", size), size)


def test_cold_export_creates_row_and_notifies(store, notifier, clip, test_user):
    outcome = dispatch_export(store, notifier, clip, test_user.id, ExportRequestFields(format="mp4", variant="full"))

    assert outcome.action == ACTION_CREATED
    assert outcome.is_ready is False
    assert notifier.payloads == [outcome.export_id]
    export = store.get(outcome.export_id)
    assert export.status == STATUS_QUEUED
    assert export.created_by == test_user.id
    assert export.clip_updated_at == clip.updated_at


def test_identical_request_reuses_ready_artifact(store, notifier, clip, test_user, tmp_path):
    request = ExportRequestFields(format="mp4", variant="full")
    first = dispatch_export(store, notifier, clip, test_user.id, request)
    _finish(store, first.export_id, tmp_path)
    store.db.query(ClipExport).update({"last_accessed_at": datetime(2024, 1, 1)}, synchronize_session=False)
    store.db.commit()

    second = dispatch_export(store, notifier, clip, test_user.id, request)

    assert second.action == ACTION_REUSED
    assert second.export_id == first.export_id
    assert second.download_url == download_url_for(first.export_id)
    assert store.db.query(ClipExport).count() == 1
    assert store.get(first.export_id).last_accessed_at > datetime(2024, 1, 1)
    assert notifier.payloads == [first.export_id]


def test_clip_edit_invalidates_reuse(store, notifier, db_session, clip, test_user, tmp_path):
    request = ExportRequestFields(format="mp4", variant="full")
    first = dispatch_export(store, notifier, clip, test_user.id, request)
    _finish(store, first.export_id, tmp_path)

    clip.updated_at = clip.updated_at + timedelta(minutes=5)
    db_session.commit()

    second = dispatch_export(store, notifier, clip, test_user.id, request)

    assert second.action == ACTION_CREATED
    assert second.export_id != first.export_id
    assert store.get(first.export_id).status == STATUS_READY


def test_concurrent_identical_requests_share_row(store, notifier, second_clip, test_user):
    request = ExportRequestFields(format="webm", variant="cropped")

    first = dispatch_export(store, notifier, second_clip, test_user.id, request)
    second = dispatch_export(store, notifier, second_clip, test_user.id, request)

    assert first.action == ACTION_CREATED
    assert second.action == ACTION_ATTACHED
    assert first.export_id == second.export_id
    pending = store.db.query(ClipExport).filter(ClipExport.status == STATUS_QUEUED).count()
    assert pending == 1


def test_missing_reusable_file_is_requeued(store, notifier, clip, test_user, tmp_path):
    request = ExportRequestFields(format="mp4", variant="full")
    first = dispatch_export(store, notifier, clip, test_user.id, request)
    _finish(store, first.export_id, tmp_path)
    os.remove(store.get(first.export_id).file_path)

    second = dispatch_export(store, notifier, clip, test_user.id, request)

    assert second.action == ACTION_REQUEUED
    assert second.export_id == first.export_id
    export = store.get(first.export_id)
    assert export.status == STATUS_QUEUED
    assert export.file_path == ""
    assert notifier.payloads == [first.export_id, first.export_id]


def test_request_requeues_job_abandoned_by_dead_worker(store, notifier, db_session, clip, test_user):
    request = ExportRequestFields(format="mp4", variant="full")
    first = dispatch_export(store, notifier, clip, test_user.id, request)
    store.claim_next("worker-gone")
    db_session.query(ClipExport).filter(ClipExport.id == first.export_id).update(
        {"updated_at": utcnow() - timedelta(hours=6)}, synchronize_session=False
    )
    db_session.commit()

    second = dispatch_export(store, notifier, clip, test_user.id, request, stale_minutes=5)

    assert second.action == ACTION_ATTACHED
    assert second.export_id == first.export_id
    export = store.get(first.export_id)
    assert export.status == STATUS_QUEUED
    assert export.locked_by is None
    assert notifier.payloads == [first.export_id, REQUEUE_PULSE]


def test_request_attaches_to_live_processing_job_quietly(store, notifier, clip, test_user):
    request = ExportRequestFields(format="mp4", variant="full")
    first = dispatch_export(store, notifier, clip, test_user.id, request)
    store.claim_next("worker-live")

    second = dispatch_export(store, notifier, clip, test_user.id, request, stale_minutes=5)

    assert second.action == ACTION_ATTACHED
    assert second.export_id == first.export_id
    assert store.get(first.export_id).status == STATUS_PROCESSING
    assert notifier.payloads == [first.export_id]


def test_crop_and_full_variants_do_not_share_artifacts(store, notifier, clip, test_user, tmp_path):
    full = dispatch_export(store, notifier, clip, test_user.id, ExportRequestFields(variant="full"))
    _finish(store, full.export_id, tmp_path)

    cropped = dispatch_export(store, notifier, clip, test_user.id, ExportRequestFields(variant="crop:sq"))

    assert cropped.action == ACTION_CREATED
    assert cropped.export_id != full.export_id


def test_other_user_gets_own_export(store, notifier, clip, test_user, other_user, tmp_path):
    mine = dispatch_export(store, notifier, clip, test_user.id, ExportRequestFields())
    _finish(store, mine.export_id, tmp_path)

    theirs = dispatch_export(store, notifier, clip, other_user.id, ExportRequestFields())

    assert theirs.action == ACTION_CREATED
    assert theirs.export_id != mine.export_id


def test_invalid_request_writes_nothing(store, notifier, clip, test_user):
    with pytest.raises(InvalidExportSpec):
        dispatch_export(store, notifier, clip, test_user.id, ExportRequestFields(format="mkv"))

    assert store.db.query(ClipExport).count() == 0
    assert notifier.payloads == []


def test_missing_clip_raises(store, notifier, test_user):
    with pytest.raises(ClipNotFound):
        dispatch_export(store, notifier, None, test_user.id, ExportRequestFields())


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    repeats=st.integers(min_value=2, max_value=6),
    fmt=st.sampled_from(["mp4", "webm", "gif"]),
    variant=st.sampled_from(["full", "cropped", "crop:sq"]),
)
def test_repeated_requests_materialise_one_artifact(repeats, fmt, variant, store, notifier, clip, test_user, tmp_path):
    """
    Property: N identical requests (with the worker finishing the first one)
    leave exactly one row for the fingerprint.
    """
    store.db.query(ClipExport).delete(synchronize_session=False)
    store.db.commit()
    request = ExportRequestFields(format=fmt, variant=variant, filters=[{"type": "speed", "params": {"x": 1.5}}])

    first = dispatch_export(store, notifier, clip, test_user.id, request)
    _finish(store, first.export_id, tmp_path)
    outcomes = [dispatch_export(store, notifier, clip, test_user.id, request) for _ in range(repeats)]

    assert all(o.action == ACTION_REUSED and o.export_id == first.export_id for o in outcomes)
    assert store.db.query(ClipExport).count() == 1
