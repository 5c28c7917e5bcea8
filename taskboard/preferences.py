"""Per-user preference storage (selected team, focus mode)."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from taskboard.fs_utils import _atomic_write

logger = logging.getLogger(__name__)

CURRENT_TEAM_KEY = "current_team_id"
FOCUS_MODE_KEY = "focus_mode"


class PreferenceStore:
    """Small key/value store backed by ``<root>/<user_id>.json`` or memory."""

    def __init__(self, root: Path | None = None, user_id: str = "anonymous") -> None:
        self._path = root / f"{user_id}.json" if root is not None else None
        self._lock = threading.Lock()
        self._memory: dict[str, Any] = {}

    @property
    def path(self) -> Path | None:
        return self._path

    def _load(self) -> dict[str, Any]:
        if self._path is None:
            return dict(self._memory)
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable preferences at %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        if self._path is None:
            self._memory = dict(data)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(self._path, json.dumps(data, sort_keys=True, indent=2) + "\n")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)
