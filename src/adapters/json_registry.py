"""JSON-file registry adapter.

Implements the core RegistryPort: the set of status ids we already processed
plus the capture on/off flag, persisted as::

    {"enabled": true, "seenStatuses": ["<id>", ...]}

Every mutation rewrites the whole file. A failed write is logged and leaves
the in-memory state as-is; the registry is advisory, so drifting from disk
only risks processing a status twice.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile

LOGGER = logging.getLogger(__name__)


class JsonStatusRegistry:
    """Thin JSON wrapper that satisfies the RegistryPort contract."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._enabled = True
        self._seen: set[str] = set()
        self._load()

    @property
    def path(self) -> str:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _load(self) -> None:
        if not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError):
            LOGGER.exception("Failed to load status registry from %s, starting empty", self._path)
            return

        if not isinstance(data, dict):
            LOGGER.error("Ignoring malformed status registry at %s", self._path)
            return

        seen = data.get("seenStatuses") or []
        if isinstance(seen, list):
            self._seen = {str(item) for item in seen}
        else:
            LOGGER.error("Ignoring malformed seenStatuses in %s", self._path)
        enabled = data.get("enabled")
        self._enabled = bool(enabled) if enabled is not None else True

    def _save(self) -> bool:
        """Write the full state atomically; return False when the write failed."""

        data = {"enabled": self._enabled, "seenStatuses": sorted(self._seen)}
        directory = os.path.dirname(os.path.abspath(self._path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".registry-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2)
                os.replace(tmp_path, self._path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError:
            LOGGER.exception("Failed to save status registry to %s", self._path)
            return False
        return True

    def contains(self, status_id: str) -> bool:
        return status_id in self._seen

    def add(self, status_id: str) -> bool:
        """Record a status id. Adding an id twice does not rewrite the file."""

        if status_id in self._seen:
            return True
        self._seen.add(status_id)
        return self._save()

    def clear(self) -> bool:
        self._seen.clear()
        return self._save()

    def set_enabled(self, enabled: bool) -> bool:
        self._enabled = bool(enabled)
        return self._save()

    def toggle(self) -> bool:
        """Flip the capture flag and return the new value."""

        self.set_enabled(not self._enabled)
        return self._enabled

    def count(self) -> int:
        return len(self._seen)
