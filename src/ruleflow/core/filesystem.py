"""Filesystem queries and the output consistency waiter.

Networked and distributed filesystems may report a file as missing for a
while after the process that wrote it has exited. ``OutputWatch`` absorbs
that lag by re-checking for a bounded grace period before giving up.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Iterable, List, Union

from ruleflow.exceptions import FilesystemLatencyError
from ruleflow.utils.logging import LogTemplates, get_logger

logger = get_logger("filesystem")

PathLike = Union[str, Path]


def exists(path: PathLike) -> bool:
    return os.path.exists(path)


def mtime(path: PathLike) -> int:
    """Modification time in nanoseconds; symlinks report their own time."""
    return os.lstat(path).st_mtime_ns


def missing(paths: Iterable[PathLike]) -> List[str]:
    return [str(p) for p in paths if not exists(p)]


def touch_parent_dirs(paths: Iterable[PathLike]) -> None:
    """Create the parent directory of every path."""
    for p in paths:
        parent = Path(p).parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)


def remove_files(paths: Iterable[PathLike]) -> List[str]:
    """Delete existing files, returning the paths actually removed."""
    removed = []
    for p in paths:
        path = Path(p)
        try:
            if path.is_file() or path.is_symlink():
                path.unlink()
                removed.append(str(p))
        except OSError as exc:
            logger.warning(f"Could not remove {path}: {exc}")
    return removed


class OutputWatch:
    """Outputs of a finished job that are still awaited.

    ``check`` never blocks: the caller re-checks on its own schedule while
    other work goes on, and the watch gives up once ``latency_wait`` seconds
    have passed since it was created.

    Args:
        paths: Files that must exist
        latency_wait: Grace period in seconds (0 checks once)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        paths: Iterable[PathLike],
        latency_wait: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.clock = clock
        self.started = clock()
        self.deadline = self.started + latency_wait
        self.pending = missing(paths)
        if self.pending and latency_wait > 0:
            logger.info(LogTemplates.OUTPUT_WAIT.format(seconds=latency_wait, paths=", ".join(self.pending)))

    def check(self) -> bool:
        """Return True once every path exists.

        Raises:
            FilesystemLatencyError: if some paths are still missing after the grace period
        """
        self.pending = missing(self.pending)
        if not self.pending:
            return True
        now = self.clock()
        if now >= self.deadline:
            raise FilesystemLatencyError(self.pending, now - self.started)
        return False
