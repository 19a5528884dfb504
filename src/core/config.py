"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

# Seconds to wait after a completed batch, keyed by its zero-based index.
BatchDelaySchedule = Callable[[int], float]


def progressive_schedule(base_minutes: float = 2, step_minutes: float = 1) -> BatchDelaySchedule:
    """Return a schedule waiting ``base + index * step`` minutes after each batch.

    With the defaults the breaks grow 2, 3, 4, 5... minutes.
    """

    def schedule(batch_index: int) -> float:
        return (base_minutes + batch_index * step_minutes) * 60

    return schedule


@dataclass(frozen=True)
class CaptureConfig:
    """Status capture settings for the core engine."""

    forward_to: str = "me"
    max_download_bytes: int = 50 * 1024 * 1024


@dataclass(frozen=True)
class BroadcastLimits:
    """Rate-limit policy applied to every broadcast job."""

    max_total: int = 50
    batch_size: int = 10
    message_delay_ms: Tuple[int, int] = (5000, 8000)
    batch_delay_schedule: BatchDelaySchedule = field(default_factory=progressive_schedule)
    # No timeout by default: a hung send stalls the job.
    send_timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_total < 1:
            raise ValueError("max_total must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        low, high = self.message_delay_ms
        if low < 0 or high < low:
            raise ValueError(f"Invalid message_delay_ms range: {self.message_delay_ms}")
