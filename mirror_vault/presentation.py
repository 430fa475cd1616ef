from __future__ import annotations

import enum
import logging
from typing import Optional

from .logs import get_logger, log_action
from .status import PairStatus


class NotificationKind(enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Presenter:
    """
    Receiving end of the presentation layer (window, tray, popups).

    The core only ever calls these hooks; presenters never touch shared
    state and send changes back as commands.
    """

    def visibility_changed(self, visible: bool) -> None:
        pass

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        pass

    def status_changed(self, pair_id: str, status: PairStatus) -> None:
        pass


_LEVELS = {
    NotificationKind.INFO: logging.INFO,
    NotificationKind.SUCCESS: logging.INFO,
    NotificationKind.WARNING: logging.WARNING,
    NotificationKind.ERROR: logging.ERROR,
}

_ACTIONS = {
    NotificationKind.INFO: "DAEMON",
    NotificationKind.SUCCESS: "SUCCESS",
    NotificationKind.WARNING: "WARNING",
    NotificationKind.ERROR: "FAILED",
}


class LogPresenter(Presenter):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger()

    def visibility_changed(self, visible: bool) -> None:
        self.logger.info("Window %s", "shown" if visible else "hidden")

    def notify(self, kind: NotificationKind, title: str, message: str) -> None:
        log_action(self.logger, _ACTIONS[kind], f"{title}: {message}", level=_LEVELS[kind])

    def status_changed(self, pair_id: str, status: PairStatus) -> None:
        self.logger.debug("Status %s: %s (%d%% of %d)", pair_id, status.state.value, status.success_rate, status.execution_count)


# -------------------------
# Notification texts
# -------------------------

def notify_backup_success(presenter: Presenter, count: int, label: Optional[str] = None) -> None:
    message = f"{count} backup(s) completed"
    if label:
        message += f" ({label})"
    presenter.notify(NotificationKind.SUCCESS, "Backup completed", message)


def notify_backup_warning(presenter: Presenter, message: str) -> None:
    presenter.notify(NotificationKind.WARNING, "Backup finished with warnings", message)


def notify_backup_failed(presenter: Presenter, message: str) -> None:
    presenter.notify(NotificationKind.ERROR, "Backup failed", message)


def notify_daemon_started(presenter: Presenter, interval: int) -> None:
    hours = interval // 3600
    if hours >= 1:
        message = f"Automatic backup every {hours} hour(s)"
    else:
        message = f"Automatic backup every {interval} seconds"
    presenter.notify(NotificationKind.INFO, "Daemon started", message)


def notify_daemon_stopped(presenter: Presenter) -> None:
    presenter.notify(NotificationKind.INFO, "Daemon stopped", "Automatic backup disabled")
