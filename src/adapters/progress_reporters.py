"""Broadcast progress reporting adapters.

Each reporter satisfies the core ProgressReporter port. The scheduler owns
timing and counting; reporters only deliver.
"""

from __future__ import annotations

import json
import logging
from typing import IO, Iterable, Optional

from adapters.notification_formatting import format_batch_progress, format_broadcast_summary
from core.config import BroadcastLimits
from core.models import BroadcastProgress, BroadcastSummary, OutboundPayload
from core.ports import ProgressReporter, TransportPort

LOGGER = logging.getLogger(__name__)


def progress_record(progress: BroadcastProgress) -> dict:
    """Serializable progress record (camelCase, matching job descriptions)."""

    return {
        "type": "progress",
        "batchIndex": progress.batch_index,
        "totalBatches": progress.total_batches,
        "batchSuccess": progress.batch_success,
        "batchFailure": progress.batch_failure,
        "totalSuccess": progress.total_success,
        "totalFailure": progress.total_failure,
        "totalPlanned": progress.total_planned,
    }


def summary_record(summary: BroadcastSummary) -> dict:
    record = {
        "type": "summary",
        "ok": summary.ok,
        "totalSuccess": summary.total_success,
        "totalFailure": summary.total_failure,
        "totalPlanned": summary.total_planned,
        "requested": summary.requested_count,
        "batchesCompleted": summary.batches_completed,
        "totalBatches": summary.total_batches,
        "cancelled": summary.cancelled,
    }
    if summary.error:
        record["error"] = summary.error
    return record


class LoggingProgressReporter:
    """Writes progress to the application log."""

    async def on_batch(self, progress: BroadcastProgress) -> None:
        LOGGER.info(
            "Batch %s/%s complete: sent=%s failed=%s progress=%s/%s",
            progress.batch_index + 1,
            progress.total_batches,
            progress.batch_success,
            progress.batch_failure,
            progress.total_success,
            progress.total_planned,
        )

    async def on_complete(self, summary: BroadcastSummary) -> None:
        LOGGER.info("Broadcast summary: %s", summary_record(summary))


class JsonLinesProgressReporter:
    """Streams one JSON object per line, for the CLI."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream

    def _write(self, record: dict) -> None:
        self._stream.write(json.dumps(record) + "\n")
        self._stream.flush()

    async def on_batch(self, progress: BroadcastProgress) -> None:
        self._write(progress_record(progress))

    async def on_complete(self, summary: BroadcastSummary) -> None:
        self._write(summary_record(summary))


class ChatProgressReporter:
    """Posts batch updates and the final summary into a chat."""

    def __init__(
        self,
        transport: TransportPort,
        chat_id: str,
        limits: BroadcastLimits,
        message: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self._chat_id = chat_id
        self._limits = limits
        self._message = message

    async def _post(self, text: str) -> None:
        result = await self._transport.send(self._chat_id, OutboundPayload(text=text, formatted=True))
        if not result.ok:
            LOGGER.warning("Failed to post broadcast progress to %s: %s", self._chat_id, result.error)

    async def on_batch(self, progress: BroadcastProgress) -> None:
        next_delay = None
        if not progress.is_last:
            next_delay = self._limits.batch_delay_schedule(progress.batch_index)
        await self._post(format_batch_progress(progress, next_delay))

    async def on_complete(self, summary: BroadcastSummary) -> None:
        await self._post(format_broadcast_summary(summary, self._message))


class FanOutReporter:
    """Delivers every event to several reporters; one failing does not stop the rest."""

    def __init__(self, reporters: Iterable[ProgressReporter]) -> None:
        self._reporters = list(reporters)

    async def on_batch(self, progress: BroadcastProgress) -> None:
        for reporter in self._reporters:
            try:
                await reporter.on_batch(progress)
            except Exception:
                LOGGER.exception("Reporter %s failed on batch update", type(reporter).__name__)

    async def on_complete(self, summary: BroadcastSummary) -> None:
        for reporter in self._reporters:
            try:
                await reporter.on_complete(summary)
            except Exception:
                LOGGER.exception("Reporter %s failed on completion", type(reporter).__name__)
