"""
Download filename helpers.

Turns user-entered clip titles and crop names into names that are safe on
every major OS while staying recognisable (case and unicode are kept).
"""
import re

DEFAULT_MAX_LENGTH = 120

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s")
_MULTI_DASH = re.compile(r"[-_]{2,}")


def sanitize_filename(name: str, max_len: int = 0) -> str:
    """
    Convert an arbitrary string into a filename-safe slug.

    Processing steps:
    1. Replace characters invalid on Windows/macOS/Linux with hyphens
    2. Replace whitespace with hyphens
    3. Collapse runs of hyphens/underscores
    4. Strip leading/trailing hyphens and dots
    5. Truncate to ``max_len`` UTF-8 bytes without splitting a character

    Returns an empty string when nothing usable is left.
    """
    if max_len <= 0:
        max_len = DEFAULT_MAX_LENGTH

    value = (name or "").strip()
    if not value:
        return ""

    value = _INVALID_CHARS.sub("-", value)
    value = _WHITESPACE.sub("-", value)
    value = _MULTI_DASH.sub("-", value)
    value = value.strip("-.")

    encoded = value.encode("utf-8")
    if len(encoded) > max_len:
        value = encoded[:max_len].decode("utf-8", errors="ignore")
        value = value.rstrip("-.")

    return value


def export_download_name(clip_title: str, variant: str, crop_name: str, export_id: str, fmt: str) -> str:
    """``{title|clip}[-{crop name|cropped}]-{export id}.{ext}``"""
    title_part = sanitize_filename(clip_title, 80) or "clip"

    crop_part = ""
    if variant.startswith("crop:"):
        crop_part = "-" + (sanitize_filename(crop_name, 30) or "cropped")

    return f"{title_part}{crop_part}-{export_id}.{fmt}"


def crop_display_name(crops, crop_id: str) -> str:
    for crop in crops or []:
        if isinstance(crop, dict) and crop.get("id") == crop_id:
            return crop.get("name") or ""
    return ""
