"""Incomplete-output markers.

Outputs of every dispatched job are recorded before the job starts and
removed once it has finished. Paths still recorded when the next run starts
belong to a job that was interrupted, so their files cannot be trusted even
when they look fresh.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Set

from ruleflow.exceptions import RuleflowError
from ruleflow.utils.logging import get_logger

logger = get_logger("markers")

MARKER_FILE = "incomplete.json"


class IncompleteMarkers:
    """Persistent set of output paths whose producing job has not finished."""

    def __init__(self, state_dir: Path):
        self.path = Path(state_dir) / MARKER_FILE
        self._paths: Set[str] = self._load()

    def _load(self) -> Set[str]:
        if not self.path.exists():
            return set()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable marker file {self.path}: {e}")
            return set()
        return set(data.get("paths", []))

    def _save(self) -> None:
        """Write the marker file atomically using temp file + rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(
                    {"paths": sorted(self._paths), "_saved_at": datetime.now().isoformat()},
                    f,
                    indent=2,
                )
                f.flush()
                os.fsync(f.fileno())
            temp_file.replace(self.path)
        except OSError as e:
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError:
                    pass
            raise RuleflowError(f"Failed to save incomplete markers: {e}") from e

    @property
    def paths(self) -> Set[str]:
        return set(self._paths)

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def mark(self, paths: Iterable[str]) -> None:
        new = set(paths) - self._paths
        if new:
            self._paths.update(new)
            self._save()

    def clear(self, paths: Iterable[str]) -> None:
        done = self._paths.intersection(paths)
        if done:
            self._paths.difference_update(done)
            self._save()

    def reset(self) -> None:
        self._paths.clear()
        if self.path.exists():
            self.path.unlink()
