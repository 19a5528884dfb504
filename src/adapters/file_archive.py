"""Filesystem archive adapter.

Implements the core ArchivePort. Layout::

    <root>/statuses/<sender_id>/<timestamp>-<status_id><ext>
    <root>/statuses/<sender_id>/<timestamp>-<status_id>_caption.txt

Text statuses and media whose download failed are written as ``.txt`` with
their text or description, so every capture leaves exactly one primary file.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional

from adapters.sqlite_storage import SQLiteStorage
from core.classifier import extension_for
from core.models import ArchivedContent, TransportResult

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def safe_component(value: str) -> str:
    """Make an id usable as a single path component."""

    cleaned = _UNSAFE_CHARS.sub("_", value).strip("_")
    return cleaned or "unknown"


def file_stem(content: ArchivedContent) -> str:
    """Deterministic file stem built from the capture time and status id."""

    timestamp = content.timestamp.isoformat().replace(":", "-").replace(".", "-")
    return f"{timestamp}-{safe_component(content.status_id)}"


class FileArchive:
    """Writes captured statuses to disk and logs them to SQLite."""

    def __init__(self, root_dir: str, index: Optional[SQLiteStorage] = None) -> None:
        self._root_dir = root_dir
        self._index = index

    def _sender_dir(self, content: ArchivedContent) -> str:
        return os.path.join(self._root_dir, "statuses", safe_component(content.sender_id))

    def save(self, content: ArchivedContent) -> TransportResult:
        """Write the archive files and return the primary file path."""

        directory = self._sender_dir(content)
        stem = file_stem(content)
        try:
            os.makedirs(directory, exist_ok=True)
            if content.media_bytes:
                path = os.path.join(directory, f"{stem}{extension_for(content.variant)}")
                with open(path, "wb") as handle:
                    handle.write(content.media_bytes)
                caption = content.variant.caption
                if caption:
                    caption_path = os.path.join(directory, f"{stem}_caption.txt")
                    with open(caption_path, "w", encoding="utf-8") as handle:
                        handle.write(caption)
            else:
                path = os.path.join(directory, f"{stem}.txt")
                with open(path, "w", encoding="utf-8") as handle:
                    handle.write(content.text_or_caption)
        except OSError as exc:
            return TransportResult.failure(f"archive write failed: {exc}")

        if self._index is not None:
            # The files are the archive; the log only feeds the stats query.
            try:
                self._index.record_archive(content, path)
            except Exception:
                LOGGER.exception("Failed to log archived status %s", content.status_id)

        return TransportResult.success(path)
