"""Local rider preferences that survive process restarts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class RiderPreferences:
    """A tiny JSON file holding the last rider name used on this device."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # keep the broken file for inspection and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_text(text, encoding="utf-8")
            self._path.unlink()
            logger.warning("preferences file %s was corrupted, moved to %s", self._path, backup)
            return {}
        return data if isinstance(data, dict) else {}

    def rider_name(self) -> str:
        """Last saved rider name, "" if none."""

        return str(self._read().get("rider_name", "") or "")

    def save_rider_name(self, name: str) -> None:
        data = self._read()
        data["rider_name"] = name
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
