"""Status content classification (core domain).

Payloads are protocol-neutral mappings produced by the transport mapper, for
example ``{"image": {"caption": "hi", "mime_type": "image/jpeg"}}``. Exactly one
shape key is expected per payload, so the ordered checks below never overlap.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from core.models import ContentKind, ContentVariant

LOGGER = logging.getLogger(__name__)

UNKNOWN_PLACEHOLDER = "Status update"

_TEXT_FIELDS = ("text", "conversation", "body", "content")
_CAPTION_FIELDS = ("caption", "description", "title")

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/avi": ".avi",
    "video/mov": ".mov",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "audio/mp3": ".mp3",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/ogg": ".ogg",
}

_DEFAULT_EXTENSIONS = {
    ContentKind.IMAGE: ".jpg",
    ContentKind.VIDEO: ".mp4",
    ContentKind.AUDIO: ".ogg",
    ContentKind.STICKER: ".webp",
    ContentKind.DOCUMENT: ".bin",
}


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _section(payload: Mapping, key: str) -> Optional[Mapping]:
    """Return the nested mapping for a shape key, or None when absent."""

    if key not in payload:
        return None
    value = payload[key]
    if isinstance(value, Mapping):
        return value
    # Bare markers like {"sticker": True} still identify the shape.
    return {} if value else None


def _classify_text(payload: Mapping) -> Optional[ContentVariant]:
    raw = payload.get("text")
    if isinstance(raw, Mapping):
        raw = raw.get("text")
    text = _clean(raw)
    if text is None:
        return None
    return ContentVariant(kind=ContentKind.TEXT, text=text)


def _classify_captioned(payload: Mapping, kind: ContentKind, fallback: str) -> Optional[ContentVariant]:
    section = _section(payload, kind.value)
    if section is None:
        return None
    caption = _clean(section.get("caption"))
    return ContentVariant(
        kind=kind,
        text=caption or fallback,
        caption=caption,
        mime_type=_clean(section.get("mime_type")),
    )


def _classify_audio(payload: Mapping) -> Optional[ContentVariant]:
    section = _section(payload, ContentKind.AUDIO.value)
    if section is None:
        return None
    return ContentVariant(
        kind=ContentKind.AUDIO,
        text="Audio status",
        mime_type=_clean(section.get("mime_type")),
    )


def _classify_document(payload: Mapping) -> Optional[ContentVariant]:
    section = _section(payload, ContentKind.DOCUMENT.value)
    if section is None:
        return None
    file_name = _clean(section.get("file_name"))
    return ContentVariant(
        kind=ContentKind.DOCUMENT,
        text=f"Document: {file_name or 'Unknown file'}",
        caption=_clean(section.get("caption")),
        file_name=file_name,
        mime_type=_clean(section.get("mime_type")),
    )


def _classify_sticker(payload: Mapping) -> Optional[ContentVariant]:
    section = _section(payload, ContentKind.STICKER.value)
    if section is None:
        return None
    return ContentVariant(
        kind=ContentKind.STICKER,
        text="Sticker status",
        mime_type=_clean(section.get("mime_type")),
    )


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _classify_location(payload: Mapping) -> Optional[ContentVariant]:
    section = _section(payload, ContentKind.LOCATION.value)
    if section is None:
        return None
    latitude = _as_float(section.get("latitude"))
    longitude = _as_float(section.get("longitude"))
    text = "Location status"
    if latitude is not None and longitude is not None:
        text = f"Location status ({latitude:.5f}, {longitude:.5f})"
    return ContentVariant(
        kind=ContentKind.LOCATION,
        text=text,
        caption=_clean(section.get("caption")),
        latitude=latitude,
        longitude=longitude,
    )


def _first_field(values: Iterable[Any], names: tuple[str, ...]) -> Optional[str]:
    for value in values:
        if isinstance(value, Mapping):
            for name in names:
                found = _clean(value.get(name))
                if found:
                    return found
    return None


def _classify_unknown(payload: Any) -> ContentVariant:
    """Best-effort scan for anything readable in an unrecognized payload."""

    if not isinstance(payload, Mapping):
        return ContentVariant(kind=ContentKind.UNKNOWN, text=UNKNOWN_PLACEHOLDER)

    LOGGER.debug("Unknown status payload keys: %s", [key for key in payload.keys() if isinstance(key, str)])

    # The payload itself is scanned first, then its nested sections in order.
    candidates = [payload, *payload.values()]
    text = _first_field(candidates, _TEXT_FIELDS)
    if text:
        return ContentVariant(kind=ContentKind.UNKNOWN, text=text)
    caption = _first_field(candidates, _CAPTION_FIELDS)
    if caption:
        return ContentVariant(kind=ContentKind.UNKNOWN, text=caption, caption=caption)
    return ContentVariant(kind=ContentKind.UNKNOWN, text=UNKNOWN_PLACEHOLDER)


def classify(payload: Any) -> ContentVariant:
    """Return the content variant for a status payload.

    Shape checks run in a fixed order (text, image, video, audio, document,
    sticker, location) and the first match wins. Anything else becomes an
    ``UNKNOWN`` variant carrying a readable fallback; this never raises.
    """

    if not isinstance(payload, Mapping):
        return _classify_unknown(payload)

    checks = (
        _classify_text,
        lambda p: _classify_captioned(p, ContentKind.IMAGE, "Image status"),
        lambda p: _classify_captioned(p, ContentKind.VIDEO, "Video status"),
        _classify_audio,
        _classify_document,
        _classify_sticker,
        _classify_location,
    )
    for check in checks:
        variant = check(payload)
        if variant is not None:
            return variant
    return _classify_unknown(payload)


def extension_for(variant: ContentVariant) -> str:
    """Pick a file extension for archived media of this variant."""

    if variant.file_name and "." in variant.file_name:
        suffix = "." + variant.file_name.rsplit(".", 1)[1].lower()
        if 1 < len(suffix) <= 8:
            return suffix
    if variant.mime_type:
        known = _MIME_EXTENSIONS.get(variant.mime_type.lower())
        if known:
            return known
    return _DEFAULT_EXTENSIONS.get(variant.kind, ".bin")
