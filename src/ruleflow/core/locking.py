"""Run lock for a working directory.

The lock is a JSON record created exclusively when a run starts dispatching.
It is removed only after a clean run; a failed or interrupted run leaves it
behind until an operator clears it with ``unlock``.
"""

from __future__ import annotations

import json
import os
import socket
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ruleflow.exceptions import AlreadyLockedError, RuleflowError
from ruleflow.utils.logging import get_logger

logger = get_logger("locking")

LOCK_DIR = "locks"
LOCK_FILE = "run.lock"


class LockManager:
    """Create, inspect and remove the run lock under ``state_dir``."""

    def __init__(self, state_dir: Path):
        self.lock_file = Path(state_dir) / LOCK_DIR / LOCK_FILE
        self._held = False

    @property
    def held(self) -> bool:
        """True if this manager created the current lock."""
        return self._held

    def is_locked(self) -> bool:
        return self.lock_file.exists()

    def read(self) -> Optional[Dict[str, Any]]:
        """Return the lock record, or None when unlocked."""
        try:
            with open(self.lock_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Lock record {self.lock_file} is unreadable: {e}")
            return {}

    def acquire(self, targets: Iterable[str] = ()) -> None:
        """Create the lock record.

        Raises:
            AlreadyLockedError: if a lock record already exists
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "started_at": datetime.now().isoformat(),
            "targets": list(targets),
        }
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise AlreadyLockedError(self.lock_file, self.read()) from None
        except OSError as e:
            raise RuleflowError(f"Could not create lock {self.lock_file}: {e}") from e

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        self._held = True
        logger.debug(f"Acquired lock {self.lock_file}")

    def release(self) -> None:
        """Remove the lock created by this manager."""
        if not self._held:
            return
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock {self.lock_file} was removed by someone else")
        self._held = False
        logger.debug(f"Released lock {self.lock_file}")

    def unlock(self) -> bool:
        """Remove the lock record regardless of who created it.

        Returns:
            True if a lock was removed.
        """
        self._held = False
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed lock {self.lock_file}")
        return True
