"""In-chat command handling for the account owner.

Commands are typed by the owner from their own account (outgoing messages
starting with "."), so no separate permission model is needed:

    .menu                     show commands and current state
    .status                   toggle status capture
    .stats                    seen/archived counts
    .clearseen                forget every seen status id
    .push <message>           broadcast to the members of the current group
    .push <group>|<message>   broadcast to the members of any group

Broadcasts run as background tasks so status capture keeps running while a
job sleeps between batches. Jobs run one at a time; a second .push waits for
the first to finish.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from adapters.json_registry import JsonStatusRegistry
from adapters.notification_formatting import (
    format_broadcast_plan,
    format_broadcast_summary,
    format_capture_toggle,
    format_menu,
    format_stats,
)
from adapters.progress_reporters import ChatProgressReporter, FanOutReporter, LoggingProgressReporter
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_transport import GroupMembers, TelegramTransport
from core.config import BroadcastLimits
from core.dispatch import DispatchScheduler, plan_job
from core.models import BroadcastJob, BroadcastSummary
from core.ports import ProgressReporter

LOGGER = logging.getLogger(__name__)

SchedulerFactory = Callable[[ProgressReporter], DispatchScheduler]

PUSH_USAGE = "Usage: .push <message> inside a group, or .push <group>|<message>"


@dataclass(frozen=True)
class ChatCommand:
    name: str
    argument: str


def parse_command(text: Optional[str]) -> Optional[ChatCommand]:
    """Split ".name argument" into a ChatCommand; None for ordinary text."""

    if not text:
        return None
    stripped = text.strip()
    if not stripped.startswith("."):
        return None
    parts = stripped.split(maxsplit=1)
    name = parts[0][1:].lower()
    if not name:
        return None
    argument = parts[1].strip() if len(parts) > 1 else ""
    return ChatCommand(name=name, argument=argument)


def parse_push_argument(argument: str) -> tuple[Optional[str], str]:
    """Return (group, message); group is None when targeting the current chat."""

    if "|" in argument:
        group, _, message = argument.partition("|")
        return group.strip() or None, message.strip()
    return None, argument.strip()


class CommandHandler:
    """Executes owner commands and returns the reply text."""

    def __init__(
        self,
        transport: TelegramTransport,
        registry: JsonStatusRegistry,
        limits: BroadcastLimits,
        storage: Optional[SQLiteStorage] = None,
        scheduler_factory: Optional[SchedulerFactory] = None,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._limits = limits
        self._storage = storage
        self._scheduler_factory = scheduler_factory or (lambda reporter: DispatchScheduler(transport, reporter))
        self._tasks: set[asyncio.Task] = set()
        self._job_lock: Optional[asyncio.Lock] = None

    @property
    def pending(self) -> set[asyncio.Task]:
        return set(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every background broadcast to finish."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def handle(self, chat_id: str, text: Optional[str], is_group: bool) -> Optional[str]:
        """Run a command; None means the text was not a known command."""

        command = parse_command(text)
        if command is None:
            return None

        LOGGER.info("Command received: .%s in %s", command.name, chat_id)
        if command.name == "menu":
            return format_menu(self._registry.enabled, self._registry.count())
        if command.name == "status":
            enabled = self._registry.toggle()
            LOGGER.info("Status capture toggled %s", "on" if enabled else "off")
            return format_capture_toggle(enabled)
        if command.name == "stats":
            return self._stats()
        if command.name == "clearseen":
            removed = self._registry.count()
            self._registry.clear()
            return f"Cleared {removed} seen statuses."
        if command.name == "push":
            return await self._push(chat_id, command.argument, is_group)
        # Anything else starting with "." is ordinary chat text.
        return None

    def _stats(self) -> str:
        archived = 0
        by_kind: dict[str, int] = {}
        if self._storage is not None:
            archived = self._storage.count_archived()
            by_kind = self._storage.count_by_kind()
        return format_stats(self._registry.enabled, self._registry.count(), archived, by_kind)

    async def _push(self, chat_id: str, argument: str, is_group: bool) -> str:
        group, message = parse_push_argument(argument)
        if group is None and not is_group:
            return PUSH_USAGE
        if not message:
            return f"Please provide a message to send.\n{PUSH_USAGE}"

        resolved = await self._transport.group_members(group or chat_id)
        if not resolved.ok:
            LOGGER.error("Failed to load members of %s: %s", group or chat_id, resolved.error)
            return "Failed to load group members. Check the group id and try again."
        members: GroupMembers = resolved.value

        job = plan_job(members.member_ids, message, self._limits)
        if not job.recipients:
            return format_broadcast_summary(BroadcastSummary(ok=False, error="No eligible recipients"))

        reporter = FanOutReporter(
            [
                LoggingProgressReporter(),
                ChatProgressReporter(self._transport, chat_id, self._limits, message),
            ]
        )
        queued = bool(self._tasks)
        scheduler = self._scheduler_factory(reporter)
        task = asyncio.create_task(self._run_job(scheduler, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        plan = format_broadcast_plan(len(job.recipients), job.requested_count, self._limits, members.title)
        if queued:
            plan += "\n\nQueued until the running broadcast finishes."
        return plan

    async def _run_job(self, scheduler: DispatchScheduler, job: BroadcastJob) -> BroadcastSummary:
        # One job at a time per account.
        if self._job_lock is None:
            self._job_lock = asyncio.Lock()
        async with self._job_lock:
            return await scheduler.run(job)
