"""
Commands accepted by the control plane.

This is the whole external surface of the core: every change to shared state
is one of these, queued and applied in arrival order.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from typing import Optional, Union

from .config import AppConfig, SharedConfig
from .executor import BackupOutcome
from .logs import get_logger, log_action
from .validation import PairValidation, validate_backup_pair


class Command:
    pass


@dataclass(frozen=True)
class ShowWindow(Command):
    pass


@dataclass(frozen=True)
class HideWindow(Command):
    pass


@dataclass(frozen=True)
class StartDaemon(Command):
    pass


@dataclass(frozen=True)
class StopDaemon(Command):
    pass


@dataclass(frozen=True)
class RunBackupNow(Command):
    pass


@dataclass(frozen=True)
class UpdateConfig(Command):
    config: AppConfig


@dataclass(frozen=True)
class AddBackupPair(Command):
    source: str
    destination: str


@dataclass(frozen=True)
class UpdateBackupPair(Command):
    index: int
    source: str
    destination: str


@dataclass(frozen=True)
class RemoveBackupPair(Command):
    index: int


@dataclass(frozen=True)
class MoveBackupPairUp(Command):
    index: int


@dataclass(frozen=True)
class MoveBackupPairDown(Command):
    index: int


@dataclass(frozen=True)
class ToggleBackupPairEnabled(Command):
    index: int
    enabled: bool


class Running:
    """Marker reported when a pair starts executing."""

    def __repr__(self) -> str:
        return "RUNNING"


RUNNING = Running()


@dataclass(frozen=True)
class UpdateBackupStatus(Command):
    pair_id: str
    outcome: Union[BackupOutcome, Running]


@dataclass(frozen=True)
class Exit(Command):
    pass


# -------------------------
# Sender handle
# -------------------------

class CommandClient:
    """
    Handle given to everything that sends commands to the control plane.

    Pair additions and edits are validated here, before anything is queued;
    the validation is returned to the caller either way.
    """

    def __init__(self, commands: "queue.Queue[Command]", config: SharedConfig, logger: Optional[logging.Logger] = None):
        self._commands = commands
        self._config = config
        self.logger = logger or get_logger()

    def send(self, command: Command) -> None:
        self._commands.put(command)

    def show_window(self) -> None:
        self.send(ShowWindow())

    def hide_window(self) -> None:
        self.send(HideWindow())

    def start_daemon(self) -> None:
        self.send(StartDaemon())

    def stop_daemon(self) -> None:
        self.send(StopDaemon())

    def run_backup_now(self) -> None:
        self.send(RunBackupNow())

    def update_config(self, config: AppConfig) -> None:
        self.send(UpdateConfig(config))

    def add_backup_pair(self, source: str, destination: str) -> PairValidation:
        pairs = self._config.snapshot().backup_pairs
        result = validate_backup_pair(source, destination, pairs)
        if result.has_errors():
            log_action(self.logger, "PAIR", f"add rejected: {'; '.join(result.error_messages())}", level=logging.WARNING)
            return result
        self.send(AddBackupPair(source, destination))
        return result

    def update_backup_pair(self, index: int, source: str, destination: str) -> PairValidation:
        pairs = self._config.snapshot().backup_pairs
        result = validate_backup_pair(source, destination, pairs, editing_index=index)
        if result.has_errors():
            log_action(self.logger, "PAIR", f"edit #{index + 1} rejected: {'; '.join(result.error_messages())}", level=logging.WARNING)
            return result
        self.send(UpdateBackupPair(index, source, destination))
        return result

    def remove_backup_pair(self, index: int) -> None:
        self.send(RemoveBackupPair(index))

    def move_backup_pair_up(self, index: int) -> None:
        self.send(MoveBackupPairUp(index))

    def move_backup_pair_down(self, index: int) -> None:
        self.send(MoveBackupPairDown(index))

    def toggle_backup_pair_enabled(self, index: int, enabled: bool) -> None:
        self.send(ToggleBackupPairEnabled(index, enabled))

    def report_status(self, pair_id: str, outcome: Union[BackupOutcome, Running]) -> None:
        self.send(UpdateBackupStatus(pair_id, outcome))

    def exit(self) -> None:
        self.send(Exit())
