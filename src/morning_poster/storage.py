from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from morning_poster.config import settings

logger = logging.getLogger(__name__)


def _safe_key(key: str) -> str:
    # The key becomes a filename; keep it inside data_dir.
    return os.path.basename(key).replace("..", "_") or "state"


class SnapshotStore:
    """
    Single-key persistence for the whole editor snapshot.

    Read once at session start and rewritten on every change. Nothing here is
    fatal: unreadable data reads as "no snapshot", failed writes are logged.
    """

    def __init__(self, root_dir: Path | None = None, key: str | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.key = _safe_key(key or settings.storage_key)
        self.path = self.root_dir / f"{self.key}.json"

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to load saved poster state: %s", e)
            return None
        if not isinstance(data, dict):
            logger.error("Saved poster state is not an object; starting fresh")
            return None
        return data

    def save(self, snapshot: dict[str, Any]) -> bool:
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(snapshot, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save poster state: %s", e)
            return False
        return True

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to clear poster state: %s", e)
