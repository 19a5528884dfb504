"""Application entry point for telerelay."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.file_archive import FileArchive
from adapters.json_registry import JsonStatusRegistry
from adapters.progress_reporters import (
    FanOutReporter,
    JsonLinesProgressReporter,
    LoggingProgressReporter,
    summary_record,
)
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_commands import CommandHandler
from adapters.telegram_mapper import SenderResolver
from adapters.telegram_transport import TelegramTransport
from client import build_client
from core.capture import CaptureEngine
from core.dispatch import DispatchScheduler, parse_job_description, validate_job
from core.models import BroadcastSummary, OutboundPayload

NAME = "TELERELAY"
FONT = "tarty-1"

EXIT_REJECTED = 1
EXIT_USAGE = 2


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    # Console logs go to stderr so stdout stays clean for JSON output.
    if config.get("console", True):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/telerelay.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_registry() -> JsonStatusRegistry:
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    return JsonStatusRegistry(settings.REGISTRY_PATH)


def _open_storage() -> SQLiteStorage:
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting telerelay")

    storage = _open_storage()
    registry = _open_registry()
    logger.info(
        "Status registry loaded: %s seen, capture %s",
        registry.count(),
        "on" if registry.enabled else "off",
    )

    client = build_client()
    # Telethon prompts for phone and code on first login and reuses the session after.
    client.start()

    transport = TelegramTransport(client, SenderResolver(client))
    engine = CaptureEngine(
        transport=transport,
        registry=registry,
        archive=FileArchive(settings.DATA_DIR, storage),
        config=settings.capture_config(),
    )
    commands = CommandHandler(transport, registry, settings.broadcast_limits(), storage)

    async def on_status(event) -> None:
        outcome = await engine.handle(event)
        if outcome.failed_stage is not None:
            logger.warning("Status %s stopped at %s: %s", outcome.status_id, outcome.failed_stage.value, outcome.error)

    transport.subscribe(on_status)

    # Commands are typed by the owner, so only outgoing messages are considered.
    @client.on(events.NewMessage(outgoing=True, pattern=r"^\."))
    async def on_command(event) -> None:
        try:
            chat_id = str(event.chat_id)
            reply = await commands.handle(chat_id, event.raw_text, bool(event.is_group))
            if reply is None:
                return
            result = await transport.send(chat_id, OutboundPayload(text=reply, formatted=True))
            if not result.ok:
                logger.warning("Failed to reply in %s: %s", chat_id, result.error)
        except Exception:
            logger.exception("Error while handling command")

    logger.info("Client connected. Listening for statuses and commands...")
    client.run_until_disconnected()


def _read_recipients_file(path: str) -> list[str]:
    with open(path, "r", encoding="utf-8") as handle:
        return [line.strip() for line in handle if line.strip() and not line.lstrip().startswith("#")]


def _job_description(args: argparse.Namespace) -> dict:
    """Merge --job, recipient flags, and limit overrides into one job description."""

    if args.job:
        if args.job == "-":
            description = json.load(sys.stdin)
        else:
            with open(args.job, "r", encoding="utf-8") as handle:
                description = json.load(handle)
        if not isinstance(description, dict):
            raise ValueError("job description must be a JSON object")
    else:
        description = {"recipients": []}

    recipients = description.get("recipients") or []
    if not isinstance(recipients, (list, tuple)):
        raise ValueError("recipients must be a list of ids")
    recipients = list(recipients)
    recipients.extend(args.to or [])
    for path in args.recipients_file or []:
        recipients.extend(_read_recipients_file(path))
    description["recipients"] = recipients

    if args.message is not None:
        description["message"] = args.message
    description.setdefault("message", "")
    if args.max_total is not None:
        description["maxTotal"] = args.max_total
    if args.batch_size is not None:
        description["batchSize"] = args.batch_size
    return description


def _print_record(record: dict) -> None:
    sys.stdout.write(json.dumps(record) + "\n")
    sys.stdout.flush()


async def _run_broadcast(client, description: dict, group: Optional[str]) -> BroadcastSummary:
    logger = logging.getLogger(__name__)
    await client.start()
    try:
        transport = TelegramTransport(client)
        if group:
            resolved = await transport.group_members(group)
            if not resolved.ok:
                logger.error("Failed to load members of %s: %s", group, resolved.error)
                return BroadcastSummary(ok=False, error=f"Failed to load group members: {resolved.error}")
            description["recipients"] = list(description["recipients"]) + resolved.value.member_ids
            logger.info("Loaded %s members from %s", len(resolved.value.member_ids), resolved.value.title)

        job = parse_job_description(description, settings.broadcast_limits())
        reporter = FanOutReporter([LoggingProgressReporter(), JsonLinesProgressReporter(sys.stdout)])
        return await DispatchScheduler(transport, reporter).run(job)
    finally:
        await client.disconnect()


def _broadcast(args: argparse.Namespace) -> int:
    _configure_logging()
    logger = logging.getLogger(__name__)

    try:
        description = _job_description(args)
        # Validate before connecting so a bad job never touches Telegram.
        job = parse_job_description(description, settings.broadcast_limits())
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    problem = validate_job(job)
    # Recipients from --group are only known after connecting.
    if problem is not None and not (args.group and job.message.strip()):
        logger.warning("Broadcast rejected: %s", problem)
        rejected = BroadcastSummary(ok=False, requested_count=job.requested_count, error=problem)
        _print_record(summary_record(rejected))
        return EXIT_REJECTED

    client = build_client()
    try:
        summary = client.loop.run_until_complete(_run_broadcast(client, description, args.group))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if not summary.ok:
        # Rejected jobs never reach the reporter, so print the record here.
        _print_record(summary_record(summary))
        return EXIT_REJECTED
    return 0


def _capture(action: str) -> None:
    registry = _open_registry()
    if action == "on":
        registry.set_enabled(True)
    elif action == "off":
        registry.set_enabled(False)
    elif action == "toggle":
        registry.toggle()
    print(f"Status capture: {'ON' if registry.enabled else 'OFF'}")


def _stats() -> None:
    registry = _open_registry()
    storage = _open_storage()
    record = {
        "enabled": registry.enabled,
        "seen": registry.count(),
        "archived": storage.count_archived(),
        "byKind": storage.count_by_kind(),
        "recent": storage.list_recent(5),
    }
    print(json.dumps(record, indent=2, default=str))


def _clear_seen() -> None:
    registry = _open_registry()
    removed = registry.count()
    registry.clear()
    print(f"Cleared {removed} seen statuses.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="telerelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Capture statuses and answer owner commands")

    broadcast = subparsers.add_parser("broadcast", help="Send one message to many recipients in batches")
    broadcast.add_argument("--job", help="JSON job description file ('-' for stdin)")
    broadcast.add_argument("--to", action="append", metavar="ID", help="Recipient id or username (repeatable)")
    broadcast.add_argument(
        "--recipients-file",
        action="append",
        metavar="FILE",
        help="File with one recipient per line (repeatable)",
    )
    broadcast.add_argument("--group", help="Add every member of this group as a recipient")
    broadcast.add_argument("--message", help="Message text (overrides the job file)")
    broadcast.add_argument("--max-total", type=int, help="Override broadcast.max_total")
    broadcast.add_argument("--batch-size", type=int, help="Override broadcast.batch_size")

    capture = subparsers.add_parser("capture", help="Show or change the status capture flag")
    capture.add_argument("action", choices=["on", "off", "toggle", "show"], nargs="?", default="show")

    subparsers.add_parser("stats", help="Print seen and archived status counts")
    subparsers.add_parser("clear-seen", help="Forget every seen status id")

    args = parser.parse_args(argv)
    if args.command == "broadcast":
        code = _broadcast(args)
        if code:
            raise SystemExit(code)
        return
    if args.command == "capture":
        _capture(args.action)
        return
    if args.command == "stats":
        _stats()
        return
    if args.command == "clear-seen":
        _clear_seen()
        return
    _run()


if __name__ == "__main__":
    main()
