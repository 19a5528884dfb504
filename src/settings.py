"""Static configuration for telerelay.

All user-editable settings (capture, broadcast limits, archive location,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (see client.py).
"""

import json
import os

from core.config import BroadcastLimits, CaptureConfig, progressive_schedule

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("TELERELAY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Archive layout: registry JSON, SQLite archive log, and status files.
_archive = _CONFIG.get("archive", {})
DATA_DIR = _project_path(_archive.get("data_dir", "data"))
REGISTRY_PATH = os.path.join(DATA_DIR, _archive.get("registry_file", "viewed_statuses.json"))
DB_PATH = os.path.join(DATA_DIR, _archive.get("db_file", "telerelay.db"))

# Status capture: where summaries are forwarded and the media download cap.
# "me" is the owner's Saved Messages chat.
_capture = _CONFIG.get("capture", {})
CAPTURE_FORWARD_TO = str(_capture.get("forward_to", "me"))
CAPTURE_MAX_DOWNLOAD_MB = float(_capture.get("max_download_mb", 50))

# Broadcast limits. The delay values encode one service's throttling
# behavior and are expected to be tuned.
# - max_total: recipients kept per job (stable prefix)
# - batch_size: recipients per batch
# - message_delay_ms: [min, max] random pause between sends in a batch
# - batch_delay_base_minutes / batch_delay_step_minutes: break after batch b
#   lasts base + b * step minutes
# - send_timeout_seconds: optional per-send timeout (null disables it)
_broadcast = _CONFIG.get("broadcast", {})
BROADCAST_MAX_TOTAL = int(_broadcast.get("max_total", 50))
BROADCAST_BATCH_SIZE = int(_broadcast.get("batch_size", 10))
BROADCAST_MESSAGE_DELAY_MS = tuple(int(value) for value in _broadcast.get("message_delay_ms", [5000, 8000]))
BROADCAST_BATCH_DELAY_BASE_MINUTES = float(_broadcast.get("batch_delay_base_minutes", 2))
BROADCAST_BATCH_DELAY_STEP_MINUTES = float(_broadcast.get("batch_delay_step_minutes", 1))
_timeout = _broadcast.get("send_timeout_seconds")
BROADCAST_SEND_TIMEOUT_SECONDS = float(_timeout) if _timeout is not None else None

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})


def capture_config() -> CaptureConfig:
    return CaptureConfig(
        forward_to=CAPTURE_FORWARD_TO,
        max_download_bytes=int(CAPTURE_MAX_DOWNLOAD_MB * 1024 * 1024),
    )


def broadcast_limits() -> BroadcastLimits:
    return BroadcastLimits(
        max_total=BROADCAST_MAX_TOTAL,
        batch_size=BROADCAST_BATCH_SIZE,
        message_delay_ms=BROADCAST_MESSAGE_DELAY_MS,
        batch_delay_schedule=progressive_schedule(
            BROADCAST_BATCH_DELAY_BASE_MINUTES,
            BROADCAST_BATCH_DELAY_STEP_MINUTES,
        ),
        send_timeout_seconds=BROADCAST_SEND_TIMEOUT_SECONDS,
    )
