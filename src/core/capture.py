"""Status capture pipeline.

The engine enforces a strict order for every inbound status:
1) Fast-exit when capture is disabled or the id was already seen
2) Acknowledge (mark viewed) through the transport, failures are non-fatal
3) Record the id in the registry, regardless of the acknowledgement
4) Classify, download media (single capped attempt), and archive
5) Forward a summary to the owner chat

Recording the id before archiving means a crash mid-pipeline loses that one
status instead of re-processing it on every redelivery.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from core.classifier import classify, extension_for
from core.config import CaptureConfig
from core.models import (
    FORWARDABLE_MEDIA_KINDS,
    ArchivedContent,
    CaptureOutcome,
    CaptureStage,
    ContentVariant,
    OutboundPayload,
    StatusEvent,
)
from core.ports import ArchivePort, RegistryPort, TransportPort

LOGGER = logging.getLogger(__name__)

FOOTER = "Auto-saved by telerelay"


def escape_md(value: str) -> str:
    """Escape the Telegram Markdown markers used in our messages."""

    for ch in r"*[`":
        value = value.replace(ch, f"\\{ch}")
    return value


def _header(content: ArchivedContent) -> str:
    timestamp = content.timestamp.astimezone().strftime("%H:%M:%S %d-%m-%Y")
    name = escape_md(content.sender_name)
    if content.sender_name == content.sender_id:
        return f"**Status from {name}**\n{timestamp}"
    return f"**Status from {name}** ({escape_md(content.sender_id)})\n{timestamp}"


def build_forward_payload(content: ArchivedContent) -> OutboundPayload:
    """Build the summary forwarded to the owner chat.

    Images and videos go out with their bytes attached when the download
    succeeded; everything else is described in a text message.
    """

    variant = content.variant
    if content.media_bytes and variant.kind in FORWARDABLE_MEDIA_KINDS:
        lines = [_header(content)]
        if variant.caption:
            lines.append(escape_md(variant.caption))
        lines.extend(["", FOOTER])
        return OutboundPayload(
            media_bytes=content.media_bytes,
            caption="\n".join(lines),
            file_name=_media_file_name(content),
            kind=variant.kind,
            formatted=True,
        )

    lines = [
        _header(content),
        f"**Type:** {variant.kind.value}",
        f"**Content:** {escape_md(content.text_or_caption)}",
        "",
        FOOTER,
    ]
    return OutboundPayload(text="\n".join(lines), formatted=True)


def _media_file_name(content: ArchivedContent) -> str:
    return f"status{extension_for(content.variant)}"


class CaptureEngine:
    """Orchestrates dedup, acknowledgement, archiving, and forwarding."""

    def __init__(
        self,
        transport: TransportPort,
        registry: RegistryPort,
        archive: ArchivePort,
        config: CaptureConfig,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._archive = archive
        self._config = config
        # Ids admitted but not yet recorded in the registry.
        self._in_flight: set[str] = set()

    async def handle(self, event: StatusEvent) -> CaptureOutcome:
        """Process one status event. Never raises."""

        # The flag is sampled once on receipt; later toggles do not affect
        # an event that has already been admitted.
        if not self._registry.enabled:
            return CaptureOutcome(status_id=event.id, stage=CaptureStage.UNSEEN, skipped="disabled")

        if self._registry.contains(event.id) or event.id in self._in_flight:
            LOGGER.debug("Dedup skip for status %s", event.id)
            return CaptureOutcome(status_id=event.id, stage=CaptureStage.UNSEEN, skipped="duplicate")

        # Claimed before the first await so overlapping redeliveries are skipped.
        self._in_flight.add(event.id)
        try:
            return await self._process(event)
        finally:
            self._in_flight.discard(event.id)

    async def _process(self, event: StatusEvent) -> CaptureOutcome:
        stage = CaptureStage.UNSEEN
        archived: Optional[ArchivedContent] = None
        try:
            ack = await self._transport.acknowledge(event)
            if not ack.ok:
                LOGGER.warning("Failed to mark status %s as viewed: %s", event.id, ack.error)
            stage = CaptureStage.ACKNOWLEDGED

            # A failed write is logged by the registry; in-memory state still
            # suppresses redeliveries for this process lifetime.
            self._registry.add(event.id)

            archived = await self._archive_content(event)
            stage = CaptureStage.ARCHIVED

            payload = build_forward_payload(archived)
            sent = await self._transport.send(self._config.forward_to, payload)
            if not sent.ok:
                LOGGER.error("Failed to forward status %s: %s", event.id, sent.error)
                return CaptureOutcome(
                    status_id=event.id,
                    stage=stage,
                    failed_stage=CaptureStage.FORWARDED,
                    error=sent.error,
                    archived=archived,
                )
            stage = CaptureStage.FORWARDED
        except Exception as exc:
            failed = _next_stage(stage)
            LOGGER.exception("Status %s failed while moving to %s", event.id, failed.value)
            return CaptureOutcome(
                status_id=event.id,
                stage=stage,
                failed_stage=failed,
                error=str(exc) or exc.__class__.__name__,
                archived=archived,
            )

        if archived.storage_path:
            LOGGER.info(
                "Captured %s status from %s to %s",
                archived.variant.kind.value,
                archived.sender_name,
                archived.storage_path,
            )
        else:
            LOGGER.info(
                "Captured %s status from %s - no file saved",
                archived.variant.kind.value,
                archived.sender_name,
            )
        return CaptureOutcome(status_id=event.id, stage=stage, archived=archived)

    async def _archive_content(self, event: StatusEvent) -> ArchivedContent:
        variant = classify(event.payload)
        media = await self._download_media(event, variant)

        content = ArchivedContent(
            status_id=event.id,
            sender_id=event.sender_id,
            sender_name=event.sender_name or event.sender_id,
            timestamp=datetime.now(timezone.utc),
            variant=variant,
            text_or_caption=variant.text,
            media_bytes=media,
        )
        saved = self._archive.save(content)
        if not saved.ok:
            LOGGER.error("Failed to archive status %s: %s", event.id, saved.error)
            return content
        return replace(content, storage_path=saved.value)

    async def _download_media(self, event: StatusEvent, variant: ContentVariant) -> Optional[bytes]:
        if not variant.is_media:
            return None
        result = await self._transport.download(event, self._config.max_download_bytes)
        if not result.ok or not result.value:
            LOGGER.warning(
                "Media download failed for status %s, archiving metadata only: %s",
                event.id,
                result.error or "empty download",
            )
            return None
        return bytes(result.value)


def _next_stage(stage: CaptureStage) -> CaptureStage:
    order = list(CaptureStage)
    index = order.index(stage)
    return order[min(index + 1, len(order) - 1)]
