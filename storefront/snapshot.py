"""
On-disk snapshots of cached datasets.

The last payload installed for each key is written to ``<directory>/<key>.json``
so that a restarted process can serve the real catalog (as a stale entry)
while the origin is still unreachable.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, TypeAdapter

logger = logging.getLogger(__name__)


class SnapshotStore:
    """One JSON file per dataset key, stamped with wall-clock save time."""

    def __init__(self, directory: str | Path, clock: Callable[[], float] = time.time):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def save(self, key: str, payload: Sequence[BaseModel]) -> None:
        document = {
            "saved_at": self._clock(),
            "rows": [row.model_dump(mode="json") for row in payload],
        }
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def load(self, key: str, model: type[BaseModel]) -> Optional[tuple[tuple, float]]:
        """
        Read a snapshot back.

        Returns ``(payload, age_seconds)``, or None when there is no snapshot
        or it cannot be parsed.
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            rows = TypeAdapter(list[model]).validate_python(document["rows"])
            saved_at = float(document["saved_at"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return None
        return tuple(rows), max(0.0, self._clock() - saved_at)

    def discard(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
