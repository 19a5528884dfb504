"""Shared chat message formatting helpers.

Keeping formatting here prevents drift between the CLI, the command handler,
and the progress reporters. Messages use Telegram Markdown (``parse_mode="md"``).
"""

from __future__ import annotations

from typing import Optional

from core.capture import escape_md
from core.config import BroadcastLimits
from core.models import BroadcastProgress, BroadcastSummary

DIVIDER = "──────────────"


def _minutes(seconds: float) -> str:
    minutes = seconds / 60
    if minutes == int(minutes):
        return f"{int(minutes)} min"
    return f"{minutes:.1f} min"


def format_broadcast_plan(
    planned: int,
    requested: int,
    limits: BroadcastLimits,
    target_label: str,
) -> str:
    """Announcement posted before the first batch starts."""

    total_batches = -(-planned // limits.batch_size)
    low, high = limits.message_delay_ms
    lines = [
        "**Broadcast started**",
        DIVIDER,
        f"**Target:** {escape_md(target_label)}",
        f"**Recipients:** {planned}/{requested}",
        f"**Batches:** {total_batches} ({limits.batch_size} each)",
        f"**Message delay:** {low / 1000:g}-{high / 1000:g} s",
    ]
    if total_batches > 1:
        breaks = ", ".join(_minutes(limits.batch_delay_schedule(index)) for index in range(min(total_batches - 1, 4)))
        lines.append(f"**Batch breaks:** {breaks}{', ...' if total_batches - 1 > 4 else ''}")
    return "\n".join(lines)


def format_batch_progress(progress: BroadcastProgress, next_delay_seconds: Optional[float] = None) -> str:
    """Text posted after every completed batch."""

    lines = [
        f"**Batch {progress.batch_index + 1}/{progress.total_batches} complete**",
        DIVIDER,
        f"Sent: {progress.batch_success}",
        f"Failed: {progress.batch_failure}",
        f"Progress: {progress.total_success}/{progress.total_planned} total",
    ]
    if progress.is_last:
        lines.extend(["", "All batches complete."])
    elif next_delay_seconds is not None:
        lines.extend(["", f"Next batch in {_minutes(next_delay_seconds)}..."])
    return "\n".join(lines)


def format_broadcast_summary(summary: BroadcastSummary, message: Optional[str] = None) -> str:
    """Final text for a finished, cancelled, or rejected broadcast."""

    if not summary.ok:
        return f"**Broadcast rejected**\n{escape_md(summary.error or 'unknown error')}"

    title = "**Broadcast cancelled**" if summary.cancelled else "**Broadcast complete**"
    lines = [
        title,
        DIVIDER,
        f"Sent: {summary.total_success}",
        f"Failed: {summary.total_failure}",
        f"Processed: {summary.total_planned}/{summary.requested_count} recipients",
        f"Batches: {summary.batches_completed}/{summary.total_batches}",
    ]
    if message:
        lines.extend(["", f"Message: \"{escape_md(message)}\""])
    return "\n".join(lines)


def format_capture_toggle(enabled: bool) -> str:
    if enabled:
        return "**Status capture:** ON\nNew statuses will be viewed, archived, and forwarded."
    return "**Status capture:** OFF\nNew statuses are ignored until capture is turned back on."


def format_stats(enabled: bool, seen_count: int, archived_count: int, by_kind: dict[str, int]) -> str:
    lines = [
        "**telerelay stats**",
        DIVIDER,
        f"Status capture: {'ON' if enabled else 'OFF'}",
        f"Seen statuses: {seen_count}",
        f"Archived statuses: {archived_count}",
    ]
    for kind, total in sorted(by_kind.items()):
        lines.append(f"  {kind}: {total}")
    return "\n".join(lines)


def format_menu(enabled: bool, seen_count: int) -> str:
    return "\n".join(
        [
            "**telerelay commands**",
            DIVIDER,
            ".menu - show this menu",
            ".status - toggle status capture",
            ".stats - seen and archived counts",
            ".clearseen - forget all seen statuses",
            ".push <message> - message every member of this group",
            ".push <group>|<message> - message every member of another group",
            "",
            f"Status capture: {'ON' if enabled else 'OFF'}",
            f"Seen statuses: {seen_count}",
        ]
    )
