"""Rate-limited broadcast fan-out.

A job is truncated to ``max_total`` recipients, split into batches of
``batch_size``, and delivered strictly one recipient at a time:

    batch 0: send, jitter, send, jitter, ..., send  -> progress
    wait batch_delay_schedule(0)
    batch 1: ...                                     -> progress
    ...
    final summary

Sends are never parallelized.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from core.config import BroadcastLimits
from core.models import (
    BroadcastJob,
    BroadcastProgress,
    BroadcastSummary,
    OutboundPayload,
    TransportResult,
)
from core.ports import ProgressReporter, TransportPort

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def plan_job(recipients: Iterable[str], message: str, limits: BroadcastLimits) -> BroadcastJob:
    """Deduplicate (keeping first occurrence) and truncate to ``max_total``."""

    unique: list[str] = []
    seen: set[str] = set()
    for recipient in recipients:
        recipient = str(recipient).strip()
        if not recipient or recipient in seen:
            continue
        seen.add(recipient)
        unique.append(recipient)

    return BroadcastJob(
        recipients=tuple(unique[: limits.max_total]),
        message=message,
        limits=limits,
        requested_count=len(unique),
    )


def _optional_positive_int(description: Mapping, key: str) -> Optional[int]:
    value = description.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer")
    return value


def parse_job_description(description: Any, defaults: BroadcastLimits) -> BroadcastJob:
    """Build a job from ``{recipients, message, maxTotal?, batchSize?}``.

    Structural problems raise ValueError; an empty recipient list or message
    is left for ``DispatchScheduler.run`` to reject with a summary.
    """

    if not isinstance(description, Mapping):
        raise ValueError("Job description must be an object")

    recipients = description.get("recipients", [])
    if isinstance(recipients, str) or not isinstance(recipients, (list, tuple)):
        raise ValueError("recipients must be a list of ids")

    message = description.get("message", "")
    if not isinstance(message, str):
        raise ValueError("message must be a string")

    overrides: dict[str, int] = {}
    max_total = _optional_positive_int(description, "maxTotal")
    if max_total is not None:
        overrides["max_total"] = max_total
    batch_size = _optional_positive_int(description, "batchSize")
    if batch_size is not None:
        overrides["batch_size"] = batch_size

    limits = replace(defaults, **overrides) if overrides else defaults
    return plan_job(recipients, message, limits)


def validate_job(job: BroadcastJob) -> Optional[str]:
    """Return why a job must be rejected before any send, or None."""

    if not job.message.strip():
        return "Message is empty"
    if not job.recipients:
        return "No eligible recipients"
    return None


class _Cancelled(Exception):
    pass


class DispatchScheduler:
    """Drives one broadcast job at a time through the transport."""

    def __init__(
        self,
        transport: TransportPort,
        reporter: Optional[ProgressReporter] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._transport = transport
        self._reporter = reporter
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run(self, job: BroadcastJob, cancel: Optional[asyncio.Event] = None) -> BroadcastSummary:
        """Run a job to completion (or cancellation) and return its summary."""

        problem = validate_job(job)
        if problem is not None:
            return self._reject(job, problem)

        limits = job.limits
        planned = len(job.recipients)
        total_batches = math.ceil(planned / limits.batch_size)
        payload = OutboundPayload(text=job.message)

        LOGGER.info(
            "Broadcast started: recipients=%s/%s, batches=%s",
            planned,
            job.requested_count,
            total_batches,
        )

        total_success = 0
        total_failure = 0
        batches_completed = 0
        cancelled = False
        try:
            for batch_index in range(total_batches):
                start = batch_index * limits.batch_size
                batch = job.recipients[start : start + limits.batch_size]
                batch_success = 0
                batch_failure = 0

                for position, recipient in enumerate(batch):
                    self._check_cancel(cancel)
                    if await self._send_one(recipient, payload, limits):
                        batch_success += 1
                        total_success += 1
                    else:
                        batch_failure += 1
                        total_failure += 1

                    if position < len(batch) - 1:
                        low, high = limits.message_delay_ms
                        delay_ms = self._rng.uniform(low, high)
                        LOGGER.debug("Waiting %.0fms before next message", delay_ms)
                        await self._pause(delay_ms / 1000, cancel)

                batches_completed += 1
                await self._emit_progress(
                    BroadcastProgress(
                        batch_index=batch_index,
                        total_batches=total_batches,
                        batch_success=batch_success,
                        batch_failure=batch_failure,
                        total_success=total_success,
                        total_failure=total_failure,
                        total_planned=planned,
                    )
                )

                if batch_index < total_batches - 1:
                    delay = limits.batch_delay_schedule(batch_index)
                    LOGGER.info("Waiting %.0f seconds before batch %s", delay, batch_index + 2)
                    await self._pause(delay, cancel)
        except _Cancelled:
            cancelled = True
            LOGGER.warning("Broadcast cancelled after %s/%s batches", batches_completed, total_batches)

        summary = BroadcastSummary(
            ok=True,
            total_success=total_success,
            total_failure=total_failure,
            total_planned=planned,
            requested_count=job.requested_count,
            batches_completed=batches_completed,
            total_batches=total_batches,
            cancelled=cancelled,
        )
        LOGGER.info(
            "Broadcast finished: sent=%s, failed=%s, planned=%s",
            total_success,
            total_failure,
            planned,
        )
        await self._emit_complete(summary)
        return summary

    async def _send_one(self, recipient: str, payload: OutboundPayload, limits: BroadcastLimits) -> bool:
        try:
            if limits.send_timeout_seconds is None:
                result = await self._transport.send(recipient, payload)
            else:
                result = await asyncio.wait_for(
                    self._transport.send(recipient, payload),
                    timeout=limits.send_timeout_seconds,
                )
        except asyncio.TimeoutError:
            result = TransportResult.failure("send timed out")
        except Exception as exc:
            LOGGER.exception("Unexpected error sending to %s", recipient)
            result = TransportResult.failure(str(exc) or exc.__class__.__name__)

        if not result.ok:
            LOGGER.error("Failed to send message to %s: %s", recipient, result.error)
        return result.ok

    async def _pause(self, seconds: float, cancel: Optional[asyncio.Event]) -> None:
        self._check_cancel(cancel)
        await self._sleep(seconds)
        self._check_cancel(cancel)

    @staticmethod
    def _check_cancel(cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise _Cancelled()

    def _reject(self, job: BroadcastJob, reason: str) -> BroadcastSummary:
        LOGGER.warning("Broadcast rejected: %s", reason)
        # Rejections never reach the reporter: nothing may touch the transport.
        return BroadcastSummary(ok=False, requested_count=job.requested_count, error=reason)

    async def _emit_progress(self, progress: BroadcastProgress) -> None:
        if self._reporter is None:
            return
        try:
            await self._reporter.on_batch(progress)
        except Exception:
            LOGGER.exception("Progress reporter failed for batch %s", progress.batch_index + 1)

    async def _emit_complete(self, summary: BroadcastSummary) -> None:
        if self._reporter is None:
            return
        try:
            await self._reporter.on_complete(summary)
        except Exception:
            LOGGER.exception("Progress reporter failed on completion")
