"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for transport, registry, archive, and
progress reporting adapters so that the core can be reused with different
backends.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from core.models import (
    ArchivedContent,
    BroadcastProgress,
    BroadcastSummary,
    OutboundPayload,
    StatusEvent,
    TransportResult,
)

StatusHandler = Callable[[StatusEvent], Awaitable[None]]


class TransportPort(Protocol):
    """The only component allowed to talk to the remote service."""

    async def acknowledge(self, event: StatusEvent) -> TransportResult:
        ...

    async def send(self, recipient_id: str, payload: OutboundPayload) -> TransportResult:
        ...

    async def download(self, event: StatusEvent, max_bytes: Optional[int] = None) -> TransportResult:
        ...


class RegistryPort(Protocol):
    """Persisted set of processed status ids plus the capture flag."""

    @property
    def enabled(self) -> bool:
        ...

    def contains(self, status_id: str) -> bool:
        ...

    def add(self, status_id: str) -> bool:
        ...

    def clear(self) -> bool:
        ...

    def set_enabled(self, enabled: bool) -> bool:
        ...


class ArchivePort(Protocol):
    """Archive collaborator for captured statuses."""

    def save(self, content: ArchivedContent) -> TransportResult:
        ...


class ProgressReporter(Protocol):
    """Receives broadcast progress snapshots and the final summary."""

    async def on_batch(self, progress: BroadcastProgress) -> None:
        ...

    async def on_complete(self, summary: BroadcastSummary) -> None:
        ...
