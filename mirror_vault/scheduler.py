from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from .commands import RUNNING, Running
from .config import AppConfig, BackupPair, SharedConfig, ToolConfig
from .executor import BackupOutcome, OutcomeKind, execute_backup
from .logs import get_logger, log_action
from .presentation import (
    NotificationKind,
    Presenter,
    notify_backup_failed,
    notify_backup_success,
    notify_backup_warning,
    notify_daemon_started,
    notify_daemon_stopped,
)

# upper bound on one uninterrupted wait, bounds stop() latency while sleeping
SLEEP_SLICE_SEC = 60.0

Executor = Callable[[Path, Path, ToolConfig], BackupOutcome]
Reporter = Callable[[str, Union[BackupOutcome, Running]], None]


@dataclass
class RunSummary:
    success: int = 0
    warnings: int = 0
    failures: int = 0
    interrupted: bool = False

    def add(self, outcome: BackupOutcome) -> None:
        if outcome.kind is OutcomeKind.SUCCESS:
            self.success += 1
        elif outcome.kind is OutcomeKind.WARNING:
            self.warnings += 1
        else:
            self.failures += 1

    @property
    def total(self) -> int:
        return self.success + self.warnings + self.failures


# -------------------------
# One pass over the pairs
# -------------------------

def run_pairs(
    pairs: Sequence[BackupPair],
    tool: ToolConfig,
    execute: Executor,
    report: Reporter,
    logger: logging.Logger,
    stop_event: Optional[threading.Event] = None,
) -> RunSummary:
    summary = RunSummary()
    for i, pair in enumerate(pairs, start=1):
        if not pair.enabled:
            logger.info("Pair #%d disabled, skipping", i)
            continue
        if stop_event is not None and stop_event.is_set():
            logger.info("Stop requested, %d pair(s) left unprocessed", len(pairs) - i + 1)
            summary.interrupted = True
            break

        log_action(logger, "RUN", f"pair #{i}: {pair.source} -> {pair.destination}", path=Path(pair.source))
        report(pair.id, RUNNING)
        try:
            outcome = execute(Path(pair.source), Path(pair.destination), tool)
        except Exception as e:
            logger.exception("Executor raised for pair #%d", i)
            outcome = BackupOutcome.failed(f"critical error: {e}")

        if outcome.kind is OutcomeKind.SUCCESS:
            log_action(logger, "SUCCESS", f"pair #{i}: {outcome.files_copied} file(s), {outcome.bytes_transferred} bytes")
        elif outcome.kind is OutcomeKind.WARNING:
            log_action(logger, "WARNING", f"pair #{i}: {outcome.message}", level=logging.WARNING)
        else:
            log_action(logger, "FAILED", f"pair #{i}: {outcome.message or 'backup failed'}", level=logging.ERROR)

        summary.add(outcome)
        report(pair.id, outcome)
    return summary


def notify_summary(presenter: Presenter, summary: RunSummary, label: str) -> None:
    if summary.failures:
        notify_backup_failed(
            presenter,
            f"{label}: {summary.success} ok, {summary.warnings} with warnings, {summary.failures} failed",
        )
    elif summary.warnings:
        notify_backup_warning(presenter, f"{label}: {summary.success} ok, {summary.warnings} with warnings")
    else:
        notify_backup_success(presenter, summary.success, label)


def run_backup_pass(
    config: AppConfig,
    execute: Executor,
    report: Reporter,
    presenter: Presenter,
    logger: logging.Logger,
    label: str,
    stop_event: Optional[threading.Event] = None,
) -> Optional[RunSummary]:
    """Run every enabled pair in stored order. Returns None when there was nothing to run."""
    if not config.enabled_pairs():
        logger.warning("%s: no backup pairs configured, skipping", label)
        presenter.notify(NotificationKind.WARNING, "Nothing to back up", "No backup pairs configured")
        return None

    logger.info("%s: %d pair(s) to process", label, len(config.enabled_pairs()))
    summary = run_pairs(config.backup_pairs, config.robocopy, execute, report, logger, stop_event)
    notify_summary(presenter, summary, label)
    logger.info(
        "%s finished: %d ok, %d warnings, %d failed",
        label, summary.success, summary.warnings, summary.failures,
    )
    return summary


# -------------------------
# Daemon
# -------------------------

class SchedulerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class DaemonLoop(threading.Thread):
    def __init__(
        self,
        config: SharedConfig,
        execute: Executor,
        report: Reporter,
        presenter: Presenter,
        logger: logging.Logger,
        stop_event: threading.Event,
    ):
        super().__init__(name="mirror-vault-daemon", daemon=True)
        self.config = config
        self.execute = execute
        self.report = report
        self.presenter = presenter
        self.logger = logger
        self.stop_event = stop_event
        self.iteration = 0

    def run(self) -> None:
        log_action(self.logger, "DAEMON", "loop started")
        while not self.stop_event.is_set():
            self.iteration += 1
            interval = SLEEP_SLICE_SEC
            try:
                snapshot = self.config.snapshot()
                interval = snapshot.check_interval_seconds
                run_backup_pass(
                    snapshot,
                    self.execute,
                    self.report,
                    self.presenter,
                    self.logger,
                    f"Daemon #{self.iteration}",
                    self.stop_event,
                )
            except Exception as e:
                log_action(self.logger, "FAILED", f"daemon tick #{self.iteration} error: {e}", level=logging.ERROR)

            if self._sleep(interval):
                break
        log_action(self.logger, "DAEMON", "loop finished")

    def _sleep(self, seconds: float) -> bool:
        """Wait for the next tick in slices. Returns True when stopped."""
        self.logger.info("Next automatic backup in %s seconds", seconds)
        remaining = max(1.0, float(seconds))
        while remaining > 0:
            chunk = min(SLEEP_SLICE_SEC, remaining)
            if self.stop_event.wait(chunk):
                self.logger.info("Stop signal received while sleeping")
                return True
            remaining -= chunk
        return False


class DaemonScheduler:
    """Starts and stops the interval loop. Reads pairs through the shared config at every tick."""

    def __init__(
        self,
        config: SharedConfig,
        report: Reporter,
        presenter: Presenter,
        execute: Executor = execute_backup,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.report = report
        self.presenter = presenter
        self.execute = execute
        self.logger = logger or get_logger()
        self._thread: Optional[DaemonLoop] = None
        self._stop_event = threading.Event()

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._thread is not None else SchedulerState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._thread is not None

    def start(self) -> bool:
        if self._thread is not None:
            self.logger.info("Daemon already running")
            return False

        interval = self.config.snapshot().check_interval_seconds
        self._stop_event = threading.Event()
        self._thread = DaemonLoop(
            self.config, self.execute, self.report, self.presenter, self.logger, self._stop_event,
        )
        self._thread.start()
        log_action(self.logger, "DAEMON", f"started (interval={interval}s)")
        notify_daemon_started(self.presenter, interval)
        return True

    def stop(self) -> bool:
        if self._thread is None:
            self.logger.info("Daemon not running")
            return False

        log_action(self.logger, "DAEMON", "stopping...")
        self._stop_event.set()
        self._thread.join()
        self._thread = None
        log_action(self.logger, "DAEMON", "stopped")
        notify_daemon_stopped(self.presenter)
        return True
