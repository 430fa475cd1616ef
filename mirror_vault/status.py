from __future__ import annotations

import copy
import enum
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import LockTimeoutError
from .executor import BackupOutcome, OutcomeKind

STATUS_LOCK_TIMEOUT_SEC = 5.0


class PairState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_OUTCOME_STATES = {
    OutcomeKind.SUCCESS: PairState.SUCCESS,
    OutcomeKind.WARNING: PairState.WARNING,
    OutcomeKind.FAILED: PairState.ERROR,
}


@dataclass
class PairStatus:
    pair_id: str
    state: PairState = PairState.PENDING
    message: str = ""
    execution_count: int = 0
    success_count: int = 0
    last_execution: Optional[float] = None
    files_copied_last: Optional[int] = None
    bytes_transferred_last: Optional[int] = None

    def mark_running(self) -> None:
        self.state = PairState.RUNNING
        self.message = ""

    def update_execution(self, outcome: BackupOutcome, now: Optional[float] = None) -> None:
        self.state = _OUTCOME_STATES[outcome.kind]
        self.message = outcome.message
        self.execution_count += 1

        if outcome.kind is OutcomeKind.SUCCESS:
            self.success_count += 1
            self.files_copied_last = outcome.files_copied
            self.bytes_transferred_last = outcome.bytes_transferred
        elif outcome.kind is OutcomeKind.WARNING:
            # metrics from the previous run are kept
            self.success_count += 1
        else:
            self.files_copied_last = 0

        self.last_execution = time.time() if now is None else now

    @property
    def success_rate(self) -> int:
        if self.execution_count == 0:
            return 0
        return self.success_count * 100 // self.execution_count

    def format_last_execution(self, now: Optional[float] = None) -> str:
        if self.last_execution is None:
            return "never"
        seconds_ago = int((time.time() if now is None else now) - self.last_execution)
        if seconds_ago < 0:
            return "now"
        if seconds_ago < 60:
            return f"{seconds_ago}s"
        if seconds_ago < 3600:
            return f"{seconds_ago // 60}m"
        if seconds_ago < 86400:
            return f"{seconds_ago // 3600}h"
        return f"{seconds_ago // 86400}d"


def human_size(size_bytes: Optional[float]) -> str:
    if not size_bytes:
        return "0B"
    size_name = ("B", "KB", "MB", "GB", "TB", "PB")
    i = 0
    while size_bytes >= 1024 and i < len(size_name) - 1:
        size_bytes /= 1024.0
        i += 1
    return f"{size_bytes:.2f} {size_name[i]}"


class StatusTracker:
    """Per-pair execution history, guarded by its own lock."""

    def __init__(self, lock_timeout: float = STATUS_LOCK_TIMEOUT_SEC):
        self._statuses: dict[str, PairStatus] = {}
        self._lock = threading.Lock()
        self.lock_timeout = lock_timeout

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError("status", self.lock_timeout)

    def _entry(self, pair_id: str) -> PairStatus:
        status = self._statuses.get(pair_id)
        if status is None:
            status = PairStatus(pair_id)
            self._statuses[pair_id] = status
        return status

    def mark_running(self, pair_id: str) -> PairStatus:
        self._acquire()
        try:
            status = self._entry(pair_id)
            status.mark_running()
            return copy.copy(status)
        finally:
            self._lock.release()

    def record(self, pair_id: str, outcome: BackupOutcome, now: Optional[float] = None) -> PairStatus:
        self._acquire()
        try:
            status = self._entry(pair_id)
            status.update_execution(outcome, now)
            return copy.copy(status)
        finally:
            self._lock.release()

    def reconcile(self, pair_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """Add PENDING entries for new ids and drop orphans. Returns (added, removed)."""
        wanted = set(pair_ids)
        self._acquire()
        try:
            added = [pid for pid in wanted if pid not in self._statuses]
            for pid in added:
                self._statuses[pid] = PairStatus(pid)
            removed = [pid for pid in self._statuses if pid not in wanted]
            for pid in removed:
                del self._statuses[pid]
            return added, removed
        finally:
            self._lock.release()

    def discard(self, pair_id: str) -> None:
        self._acquire()
        try:
            self._statuses.pop(pair_id, None)
        finally:
            self._lock.release()

    def get(self, pair_id: str) -> Optional[PairStatus]:
        self._acquire()
        try:
            status = self._statuses.get(pair_id)
            return copy.copy(status) if status else None
        finally:
            self._lock.release()

    def snapshot(self) -> dict[str, PairStatus]:
        self._acquire()
        try:
            return {pid: copy.copy(s) for pid, s in self._statuses.items()}
        finally:
            self._lock.release()

    def __contains__(self, pair_id: object) -> bool:
        return self.get(pair_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self.snapshot())
