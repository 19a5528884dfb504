"""Telethon transport adapter.

Implements the core TransportPort. This is the only module that talks to
Telegram on behalf of the core: it marks stories as viewed, downloads story
media, sends messages, and feeds story updates into a handler.

Every call returns a TransportResult; Telethon errors stop at this boundary.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from telethon import errors, events, functions, utils
from telethon.tl.types import MessageMediaDocument, UpdateStory

from adapters.telegram_mapper import SenderResolver, StoryRef, build_status_event
from core.models import ContentKind, OutboundPayload, StatusEvent, TransportResult
from core.ports import StatusHandler

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupMembers:
    """Resolved group title plus member ids, in participant order."""

    title: str
    member_ids: list[str]


def resolve_target(recipient_id: Union[str, int]) -> Union[str, int]:
    """Numeric ids become ints for Telethon; usernames, links, and "me" pass through."""

    if isinstance(recipient_id, int):
        return recipient_id
    value = recipient_id.strip()
    if value.lstrip("-").isdigit():
        return int(value)
    return value


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _media_size(media: Any) -> Optional[int]:
    if isinstance(media, MessageMediaDocument):
        return getattr(media.document, "size", None)
    return None


class TelegramTransport:
    """Transport adapter backed by a connected Telethon client."""

    def __init__(self, client, sender_resolver: Optional[SenderResolver] = None) -> None:
        self._client = client
        self._sender_resolver = sender_resolver

    async def acknowledge(self, event: StatusEvent) -> TransportResult:
        """Mark a story as viewed (ReadStories up to this story id)."""

        ref = event.ref
        if not isinstance(ref, StoryRef):
            return TransportResult.failure("status has no story reference")
        try:
            peer = await self._client.get_input_entity(ref.peer)
            await self._client(functions.stories.ReadStoriesRequest(peer=peer, max_id=ref.story_id))
        except Exception as exc:
            return TransportResult.failure(_describe(exc))
        LOGGER.info("Marked status as viewed: %s", event.id)
        return TransportResult.success()

    async def download(self, event: StatusEvent, max_bytes: Optional[int] = None) -> TransportResult:
        """Download story media once; oversized media is refused before fetching."""

        media = getattr(event.ref, "media", None)
        if media is None:
            return TransportResult.failure("status has no media")

        size = _media_size(media)
        if max_bytes is not None and size is not None and size > max_bytes:
            return TransportResult.failure(f"media is {size} bytes, cap is {max_bytes}")

        try:
            data = await self._client.download_media(media, file=bytes)
        except Exception as exc:
            return TransportResult.failure(_describe(exc))

        if not data:
            return TransportResult.failure("empty download")
        if max_bytes is not None and len(data) > max_bytes:
            return TransportResult.failure(f"media is {len(data)} bytes, cap is {max_bytes}")
        return TransportResult.success(data)

    async def send(self, recipient_id: str, payload: OutboundPayload) -> TransportResult:
        """Send text, or media with a caption, to one recipient."""

        target = resolve_target(recipient_id)
        parse_mode = "md" if payload.formatted else None
        try:
            if payload.media_bytes:
                upload = io.BytesIO(payload.media_bytes)
                # Telethon infers the media type from the file name.
                upload.name = payload.file_name or "status.bin"
                await self._client.send_file(
                    target,
                    upload,
                    caption=payload.caption or "",
                    parse_mode=parse_mode,
                    supports_streaming=payload.kind is ContentKind.VIDEO,
                )
            else:
                await self._client.send_message(
                    target,
                    payload.text or payload.caption or "",
                    parse_mode=parse_mode,
                    link_preview=False,
                )
        except errors.FloodWaitError as exc:
            return TransportResult.failure(f"flood wait of {exc.seconds}s")
        except Exception as exc:
            return TransportResult.failure(_describe(exc))
        return TransportResult.success()

    async def group_members(self, group: Union[str, int]) -> TransportResult:
        """Return GroupMembers for a group, skipping bots, deleted accounts, and us."""

        try:
            entity = await self._client.get_entity(resolve_target(group))
            member_ids: list[str] = []
            async for user in self._client.iter_participants(entity):
                if getattr(user, "bot", False) or getattr(user, "deleted", False):
                    continue
                if getattr(user, "is_self", False):
                    continue
                member_ids.append(str(user.id))
        except Exception as exc:
            return TransportResult.failure(_describe(exc))
        title = utils.get_display_name(entity) or str(group)
        return TransportResult.success(GroupMembers(title=title, member_ids=member_ids))

    def subscribe(self, handler: StatusHandler) -> None:
        """Feed every incoming story update to ``handler`` as a StatusEvent."""

        async def on_story(update) -> None:
            try:
                event = await build_status_event(update, self._sender_resolver)
                if event is None:
                    return
                await handler(event)
            except Exception:
                LOGGER.exception("Error while processing status update")

        self._client.add_event_handler(on_story, events.Raw(types=UpdateStory))
