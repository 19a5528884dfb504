from __future__ import annotations

import asyncio
from typing import Optional

from core.capture import FOOTER, CaptureEngine, build_forward_payload
from core.classifier import classify
from core.config import CaptureConfig
from core.models import (
    ArchivedContent,
    CaptureStage,
    ContentKind,
    OutboundPayload,
    StatusEvent,
    TransportResult,
)


class FakeTransport:
    def __init__(
        self,
        *,
        ack_ok: bool = True,
        download: Optional[bytes] = None,
        send_ok: bool = True,
    ) -> None:
        self.ack_ok = ack_ok
        self.download_bytes = download
        self.send_ok = send_ok
        self.acknowledged: list[str] = []
        self.downloads: list[tuple[str, Optional[int]]] = []
        self.sent: list[tuple[str, OutboundPayload]] = []

    async def acknowledge(self, event: StatusEvent) -> TransportResult:
        self.acknowledged.append(event.id)
        return TransportResult.success() if self.ack_ok else TransportResult.failure("ack refused")

    async def download(self, event: StatusEvent, max_bytes: Optional[int] = None) -> TransportResult:
        self.downloads.append((event.id, max_bytes))
        if self.download_bytes is None:
            return TransportResult.failure("media expired")
        return TransportResult.success(self.download_bytes)

    async def send(self, recipient_id: str, payload: OutboundPayload) -> TransportResult:
        self.sent.append((recipient_id, payload))
        return TransportResult.success() if self.send_ok else TransportResult.failure("chat not found")


class FakeRegistry:
    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self.seen: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def contains(self, status_id: str) -> bool:
        return status_id in self.seen

    def add(self, status_id: str) -> bool:
        self.seen.add(status_id)
        return True

    def clear(self) -> bool:
        self.seen.clear()
        return True

    def set_enabled(self, enabled: bool) -> bool:
        self._enabled = enabled
        return True


class FakeArchive:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.saved: list[ArchivedContent] = []

    def save(self, content: ArchivedContent) -> TransportResult:
        self.saved.append(content)
        if not self.ok:
            return TransportResult.failure("disk full")
        return TransportResult.success(f"/archive/{content.status_id}")


class ExplodingArchive:
    def __init__(self) -> None:
        self.calls = 0

    def save(self, content: ArchivedContent) -> TransportResult:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("boom")
        return TransportResult.success("/archive/ok")


def _event(status_id: str = "100:1", payload=None) -> StatusEvent:
    return StatusEvent(
        id=status_id,
        sender_id="100",
        sender_name="Alice",
        payload=payload if payload is not None else {"text": "hello"},
    )


def _engine(transport, registry, archive, max_bytes: int = 1024) -> CaptureEngine:
    return CaptureEngine(
        transport=transport,
        registry=registry,
        archive=archive,
        config=CaptureConfig(forward_to="me", max_download_bytes=max_bytes),
    )


def test_text_status_is_acknowledged_archived_and_forwarded() -> None:
    transport = FakeTransport()
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    outcome = asyncio.run(engine.handle(_event()))

    assert outcome.completed
    assert outcome.stage is CaptureStage.FORWARDED
    assert transport.acknowledged == ["100:1"]
    assert registry.seen == {"100:1"}
    assert transport.downloads == []
    assert archive.saved[0].text_or_caption == "hello"
    assert outcome.archived.storage_path == "/archive/100:1"

    recipient, payload = transport.sent[0]
    assert recipient == "me"
    assert payload.media_bytes is None
    assert "**Status from Alice** (100)" in payload.text
    assert "**Type:** text" in payload.text
    assert "**Content:** hello" in payload.text
    assert payload.text.endswith(FOOTER)


def test_redelivered_status_is_processed_once() -> None:
    transport = FakeTransport()
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    async def deliver_twice():
        first = await engine.handle(_event())
        second = await engine.handle(_event())
        return first, second

    first, second = asyncio.run(deliver_twice())

    assert first.completed
    assert second.skipped == "duplicate"
    assert len(archive.saved) == 1
    assert len(transport.sent) == 1
    assert transport.acknowledged == ["100:1"]


def test_disabled_capture_touches_nothing() -> None:
    transport = FakeTransport()
    registry = FakeRegistry(enabled=False)
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    outcome = asyncio.run(engine.handle(_event()))

    assert outcome.skipped == "disabled"
    assert transport.acknowledged == []
    assert transport.sent == []
    assert archive.saved == []
    # The id stays unseen so it can be captured after capture is re-enabled.
    assert registry.seen == set()


def test_acknowledge_failure_does_not_stop_capture() -> None:
    transport = FakeTransport(ack_ok=False)
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    outcome = asyncio.run(engine.handle(_event()))

    assert outcome.completed
    assert registry.seen == {"100:1"}
    assert len(archive.saved) == 1
    assert len(transport.sent) == 1


def test_download_failure_archives_metadata_only() -> None:
    transport = FakeTransport(download=None)
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive, max_bytes=2048)

    outcome = asyncio.run(engine.handle(_event(payload={"image": {"caption": "beach"}})))

    assert outcome.completed
    assert transport.downloads == [("100:1", 2048)]
    saved = archive.saved[0]
    assert saved.media_bytes is None
    assert saved.variant.kind is ContentKind.IMAGE
    assert saved.text_or_caption == "beach"
    _, payload = transport.sent[0]
    assert payload.media_bytes is None
    assert "**Type:** image" in payload.text


def test_image_with_bytes_is_forwarded_as_media() -> None:
    transport = FakeTransport(download=b"\xff\xd8jpeg")
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    asyncio.run(engine.handle(_event(payload={"image": {"caption": "beach", "mime_type": "image/jpeg"}})))

    _, payload = transport.sent[0]
    assert payload.media_bytes == b"\xff\xd8jpeg"
    assert payload.file_name == "status.jpg"
    assert payload.kind is ContentKind.IMAGE
    assert "beach" in payload.caption
    assert payload.formatted


def test_audio_with_bytes_is_forwarded_as_text() -> None:
    transport = FakeTransport(download=b"ogg")
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    asyncio.run(engine.handle(_event(payload={"audio": {}})))

    assert archive.saved[0].media_bytes == b"ogg"
    _, payload = transport.sent[0]
    assert payload.media_bytes is None
    assert "**Content:** Audio status" in payload.text


def test_archive_write_failure_still_forwards() -> None:
    transport = FakeTransport()
    registry = FakeRegistry()
    archive = FakeArchive(ok=False)
    engine = _engine(transport, registry, archive)

    outcome = asyncio.run(engine.handle(_event()))

    assert outcome.completed
    assert outcome.archived.storage_path is None
    assert len(transport.sent) == 1


def test_forward_failure_is_reported() -> None:
    transport = FakeTransport(send_ok=False)
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    outcome = asyncio.run(engine.handle(_event()))

    assert not outcome.completed
    assert outcome.stage is CaptureStage.ARCHIVED
    assert outcome.failed_stage is CaptureStage.FORWARDED
    assert outcome.error == "chat not found"
    assert registry.seen == {"100:1"}


def test_unexpected_error_does_not_block_next_event() -> None:
    transport = FakeTransport()
    registry = FakeRegistry()
    archive = ExplodingArchive()
    engine = _engine(transport, registry, archive)

    async def deliver():
        first = await engine.handle(_event("100:1"))
        second = await engine.handle(_event("100:2"))
        return first, second

    first, second = asyncio.run(deliver())

    assert first.failed_stage is CaptureStage.ARCHIVED
    assert first.error == "boom"
    assert second.completed
    assert registry.seen == {"100:1", "100:2"}
    assert len(transport.sent) == 1


def test_forward_payload_escapes_markdown_in_content() -> None:
    content = ArchivedContent(
        status_id="100:1",
        sender_id="100",
        sender_name="*Bob*",
        timestamp=_event().received_at,
        variant=classify({"text": "a*b"}),
        text_or_caption="a*b",
    )

    payload = build_forward_payload(content)

    assert "\\*Bob\\*" in payload.text
    assert "**Content:** a\\*b" in payload.text


class YieldingTransport(FakeTransport):
    async def acknowledge(self, event: StatusEvent) -> TransportResult:
        await asyncio.sleep(0)
        return await super().acknowledge(event)


class DisablingTransport(FakeTransport):
    def __init__(self, registry: FakeRegistry) -> None:
        super().__init__()
        self.registry = registry

    async def acknowledge(self, event: StatusEvent) -> TransportResult:
        self.registry.set_enabled(False)
        return await super().acknowledge(event)


def test_overlapping_redeliveries_are_processed_once() -> None:
    transport = YieldingTransport()
    registry = FakeRegistry()
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    async def deliver_together():
        return await asyncio.gather(engine.handle(_event("100:1")), engine.handle(_event("100:1")))

    first, second = asyncio.run(deliver_together())

    assert first.completed
    assert second.skipped == "duplicate"
    assert len(archive.saved) == 1
    assert len(transport.sent) == 1
    assert transport.acknowledged == ["100:1"]


def test_failed_event_can_be_redelivered_after_release() -> None:
    transport = FakeTransport()
    registry = FakeRegistry()
    engine = _engine(transport, registry, ExplodingArchive())

    asyncio.run(engine.handle(_event("100:1")))
    registry.clear()
    outcome = asyncio.run(engine.handle(_event("100:1")))

    assert outcome.completed


def test_disabling_mid_flight_does_not_affect_admitted_event() -> None:
    registry = FakeRegistry()
    transport = DisablingTransport(registry)
    archive = FakeArchive()
    engine = _engine(transport, registry, archive)

    async def deliver():
        admitted = await engine.handle(_event("100:1"))
        later = await engine.handle(_event("100:2"))
        return admitted, later

    admitted, later = asyncio.run(deliver())

    assert admitted.completed
    assert len(archive.saved) == 1
    assert len(transport.sent) == 1
    assert later.skipped == "disabled"
    assert registry.seen == {"100:1"}
