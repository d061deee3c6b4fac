"""Tests for download preparation and filenames."""

import pytest

from conftest import add_export, write_artifact
from rewind.models.export import STATUS_PROCESSING, STATUS_QUEUED
from rewind.services.export_download import (
    FILE_MISSING_MESSAGE,
    ExportFileMissing,
    ExportNotFound,
    ExportNotReady,
    media_type_for,
    prepare_download,
)
from rewind.services.filenames import crop_display_name, export_download_name, sanitize_filename


@pytest.mark.parametrize(
    "name,max_len,expected",
    [
        ("Launch Recap", 0, "Launch-Recap"),
        ('a<b>c:"d"/e\\f|g?h*i', 0, "a-b-c-d-e-f-g-h-i"),
        ("  --hello__ world..  ", 0, "hello-world"),
        ("Ünïcødé Title", 0, "Ünïcødé-Title"),
        ("   ", 0, ""),
        ("abcdefghij", 4, "abcd"),
    ],
)
def test_sanitize_filename(name, max_len, expected):
    assert sanitize_filename(name, max_len) == expected


def test_sanitize_filename_truncates_on_character_boundary():
    # "é" is two bytes; a 3-byte cap cannot split it.
    assert sanitize_filename("ééé", 3) == "é"


def test_export_download_name_variants():
    assert export_download_name("Launch Recap", "full", "", "x1", "mp4") == "Launch-Recap-x1.mp4"
    assert export_download_name("", "full", "", "x1", "gif") == "clip-x1.gif"
    assert export_download_name("Recap", "crop:sq", "Square crop", "x1", "webm") == "Recap-Square-crop-x1.webm"
    assert export_download_name("Recap", "crop:sq", "", "x1", "mp4") == "Recap-cropped-x1.mp4"
    assert export_download_name("Recap", "cropped", "ignored", "x1", "mp4") == "Recap-x1.mp4"


def test_crop_display_name():
    crops = [{"id": "sq", "name": "Square"}, {"id": "wide"}]

    assert crop_display_name(crops, "sq") == "Square"
    assert crop_display_name(crops, "wide") == ""
    assert crop_display_name(None, "sq") == ""


def test_media_type_for_formats():
    assert media_type_for("mp4") == "video/mp4"
    assert media_type_for("gif") == "image/gif"
    assert media_type_for("nope") == "application/octet-stream"


def test_prepare_download_for_crop_variant(store, notifier, db_session, clip, test_user, tmp_path):
    path = write_artifact(tmp_path, "a.mp4", 6)
    export = add_export(db_session, clip, test_user, file_path=path, size_bytes=6, variant="crop:sq")
    export_id = export.id

    ticket = prepare_download(store, notifier, export_id)

    assert ticket.path == path
    assert ticket.filename == f"Launch-Recap-Square-crop-{export_id}.mp4"
    assert ticket.media_type == "video/mp4"
    assert store.get(export_id).last_accessed_at is not None
    assert notifier.payloads == []


@pytest.mark.parametrize("status", [STATUS_QUEUED, STATUS_PROCESSING])
def test_prepare_download_not_ready(store, notifier, db_session, clip, test_user, status):
    export = add_export(db_session, clip, test_user, status=status)

    with pytest.raises(ExportNotReady):
        prepare_download(store, notifier, export.id)


def test_prepare_download_unknown(store, notifier):
    with pytest.raises(ExportNotFound):
        prepare_download(store, notifier, "missing")


def test_prepare_download_missing_file_requeues(store, notifier, db_session, clip, test_user, tmp_path):
    export = add_export(db_session, clip, test_user, file_path=str(tmp_path / "gone.mp4"), size_bytes=6)
    export_id = export.id

    with pytest.raises(ExportFileMissing) as excinfo:
        prepare_download(store, notifier, export_id)

    assert str(excinfo.value) == FILE_MISSING_MESSAGE
    assert excinfo.value.requeued_id == export_id
    assert store.get(export_id).status == STATUS_QUEUED
    assert notifier.payloads == [export_id]
