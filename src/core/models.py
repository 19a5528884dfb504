"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from core.config import BroadcastLimits


class ContentKind(str, Enum):
    """Classified kind of a captured status payload."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    UNKNOWN = "unknown"


MEDIA_KINDS = frozenset(
    {
        ContentKind.IMAGE,
        ContentKind.VIDEO,
        ContentKind.AUDIO,
        ContentKind.DOCUMENT,
        ContentKind.STICKER,
    }
)

# Only these kinds are forwarded with the media attached.
FORWARDABLE_MEDIA_KINDS = frozenset({ContentKind.IMAGE, ContentKind.VIDEO})


@dataclass(frozen=True)
class ContentVariant:
    """Classification result. ``text`` is always a non-empty description."""

    kind: ContentKind
    text: str
    caption: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def is_media(self) -> bool:
        return self.kind in MEDIA_KINDS


@dataclass(frozen=True)
class StatusEvent:
    """Inbound broadcast status as seen by the capture engine.

    ``payload`` is a protocol-neutral mapping built by the transport mapper,
    while ``ref`` is whatever the transport needs to acknowledge or download
    the event later. The core never looks inside ``ref``.
    """

    id: str
    sender_id: str
    payload: Any
    ref: Any = None
    sender_name: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ArchivedContent:
    """Archive entry written once per processed status."""

    status_id: str
    sender_id: str
    sender_name: str
    timestamp: datetime
    variant: ContentVariant
    text_or_caption: str
    media_bytes: Optional[bytes] = None
    storage_path: Optional[str] = None


@dataclass(frozen=True)
class OutboundPayload:
    """Message body handed to the transport for delivery."""

    text: Optional[str] = None
    media_bytes: Optional[bytes] = None
    caption: Optional[str] = None
    file_name: Optional[str] = None
    kind: Optional[ContentKind] = None
    # True when text or caption uses chat Markdown.
    formatted: bool = False


@dataclass(frozen=True)
class TransportResult:
    """Tagged result for every fallible transport or storage step."""

    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "TransportResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "TransportResult":
        return cls(ok=False, error=error)


class CaptureStage(str, Enum):
    """Pipeline stages a status moves through."""

    UNSEEN = "unseen"
    ACKNOWLEDGED = "acknowledged"
    ARCHIVED = "archived"
    FORWARDED = "forwarded"


@dataclass(frozen=True)
class CaptureOutcome:
    """What happened to one status event."""

    status_id: str
    stage: CaptureStage
    skipped: Optional[str] = None
    failed_stage: Optional[CaptureStage] = None
    error: Optional[str] = None
    archived: Optional[ArchivedContent] = None

    @property
    def completed(self) -> bool:
        return self.stage is CaptureStage.FORWARDED and self.failed_stage is None


@dataclass(frozen=True)
class BroadcastProgress:
    """Snapshot emitted after every completed batch."""

    batch_index: int
    total_batches: int
    batch_success: int
    batch_failure: int
    total_success: int
    total_failure: int
    total_planned: int

    @property
    def is_last(self) -> bool:
        return self.batch_index >= self.total_batches - 1


@dataclass(frozen=True)
class BroadcastSummary:
    """Final result of a broadcast job, including rejected jobs."""

    ok: bool
    total_success: int = 0
    total_failure: int = 0
    total_planned: int = 0
    requested_count: int = 0
    batches_completed: int = 0
    total_batches: int = 0
    cancelled: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class BroadcastJob:
    """One fan-out request.

    ``recipients`` is already deduplicated and truncated to ``limits.max_total``
    by ``core.dispatch.plan_job``; ``requested_count`` keeps the original size.
    """

    recipients: tuple[str, ...]
    message: str
    limits: "BroadcastLimits"
    requested_count: int
