"""Telegram-to-core status mapping adapter.

Telegram stories are the ephemeral broadcast statuses we capture. This module
keeps Telethon-specific details out of the core pipeline by turning a story
update into a StatusEvent with a protocol-neutral payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from telethon import utils
from telethon.tl.types import (
    DocumentAttributeAudio,
    DocumentAttributeFilename,
    DocumentAttributeSticker,
    DocumentAttributeVideo,
    GeoPoint,
    MessageMediaDocument,
    MessageMediaGeo,
    MessageMediaGeoLive,
    MessageMediaPhoto,
    MessageMediaVenue,
    StoryItemDeleted,
    StoryItemSkipped,
)

from core.models import StatusEvent


@dataclass(frozen=True)
class StoryRef:
    """Transport reference kept on the StatusEvent for acknowledge/download."""

    peer: Any
    story_id: int
    media: Any = None


class SenderResolver:
    """Resolve display names for story posters, with a peer_id cache."""

    def __init__(self, client) -> None:
        self._client = client
        self._cache: dict[int, Optional[str]] = {}

    async def display_name(self, peer) -> Optional[str]:
        peer_id = utils.get_peer_id(peer)
        if peer_id in self._cache:
            return self._cache[peer_id]
        try:
            entity = await self._client.get_entity(peer)
        except Exception:
            self._cache[peer_id] = None
            return None
        name = utils.get_display_name(entity) or None
        self._cache[peer_id] = name
        return name


def status_id(peer_id: int, story_id: int) -> str:
    """Story ids are only unique per peer, so the dedup key carries both."""

    return f"{peer_id}:{story_id}"


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _document_payload(document: Any, caption: Optional[str]) -> dict:
    attributes = getattr(document, "attributes", None) or []
    mime_type = getattr(document, "mime_type", None)
    file_name = None
    for attribute in attributes:
        if isinstance(attribute, DocumentAttributeFilename):
            file_name = attribute.file_name

    # Animated stickers also carry a video attribute, so stickers go first.
    if any(isinstance(attribute, DocumentAttributeSticker) for attribute in attributes):
        return {"sticker": {"mime_type": mime_type}}
    if any(isinstance(attribute, DocumentAttributeVideo) for attribute in attributes):
        return {"video": {"caption": caption, "mime_type": mime_type}}
    if any(isinstance(attribute, DocumentAttributeAudio) for attribute in attributes):
        return {"audio": {"mime_type": mime_type}}
    return {"document": {"file_name": file_name, "mime_type": mime_type, "caption": caption}}


def _location_payload(media: Any, caption: Optional[str]) -> dict:
    geo = getattr(media, "geo", None)
    section: dict[str, Any] = {"caption": caption or _clean(getattr(media, "title", None))}
    if isinstance(geo, GeoPoint):
        section["latitude"] = geo.lat
        section["longitude"] = geo.long
    return {"location": section}


def story_payload(story: Any) -> dict:
    """Build the protocol-neutral payload consumed by the core classifier."""

    caption = _clean(getattr(story, "caption", None))
    media = getattr(story, "media", None)

    if media is None:
        return {"text": caption} if caption else {}
    if isinstance(media, MessageMediaPhoto):
        return {"image": {"caption": caption, "mime_type": "image/jpeg"}}
    if isinstance(media, MessageMediaDocument):
        return _document_payload(media.document, caption)
    if isinstance(media, (MessageMediaGeo, MessageMediaGeoLive, MessageMediaVenue)):
        return _location_payload(media, caption)

    # Unsupported media still keeps its caption for the classifier's fallback scan.
    return {type(media).__name__: {"caption": caption}}


async def build_status_event(update: Any, resolver: Optional[SenderResolver] = None) -> Optional[StatusEvent]:
    """Build a core StatusEvent from an ``UpdateStory``; None for non-capturable stories."""

    story = getattr(update, "story", None)
    if story is None or isinstance(story, (StoryItemDeleted, StoryItemSkipped)):
        return None
    # Our own stories are not captured.
    if getattr(story, "out", False):
        return None

    peer = update.peer
    peer_id = utils.get_peer_id(peer)
    sender_name = None
    if resolver is not None:
        sender_name = await resolver.display_name(peer)

    return StatusEvent(
        id=status_id(peer_id, story.id),
        sender_id=str(peer_id),
        payload=story_payload(story),
        ref=StoryRef(peer=peer, story_id=story.id, media=getattr(story, "media", None)),
        sender_name=sender_name,
    )
