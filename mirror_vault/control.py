"""
Control plane: the single consumer of the command queue.

Every change to shared state (window intent, daemon on/off, pairs, status
history) happens on the control-plane thread, one command at a time, in the
order the commands were queued. Worker threads (daemon ticks, manual runs)
report back by queuing UpdateBackupStatus like any other caller.

Lock order: the configuration lock is always released before the status lock
is taken.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .commands import (
    AddBackupPair,
    Command,
    CommandClient,
    Exit,
    HideWindow,
    MoveBackupPairDown,
    MoveBackupPairUp,
    RemoveBackupPair,
    Running,
    RunBackupNow,
    ShowWindow,
    StartDaemon,
    StopDaemon,
    ToggleBackupPairEnabled,
    UpdateBackupPair,
    UpdateBackupStatus,
    UpdateConfig,
)
from .config import BackupPair, ConfigStore, SharedConfig, renumber
from .errors import ConfigError, LockTimeoutError
from .executor import execute_backup
from .logs import get_logger, log_action
from .presentation import LogPresenter, Presenter
from .scheduler import DaemonScheduler, Executor, run_backup_pass
from .status import PairStatus, StatusTracker
from .validation import validate_cross


@dataclass
class AppState:
    window_visible: bool = True
    daemon_running: bool = False
    should_exit: bool = False


class ControlPlane:
    def __init__(
        self,
        store: ConfigStore,
        config: SharedConfig,
        presenter: Optional[Presenter] = None,
        execute: Executor = execute_backup,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.config = config
        self.presenter = presenter or LogPresenter()
        self.execute = execute
        self.logger = logger or get_logger()

        self.commands: "queue.Queue[Command]" = queue.Queue()
        self.client = CommandClient(self.commands, config, self.logger)
        self.tracker = StatusTracker()
        self.scheduler = DaemonScheduler(config, self.client.report_status, self.presenter, execute, self.logger)

        self._state = AppState()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self._handlers: dict[type, Callable] = {
            ShowWindow: self._show_window,
            HideWindow: self._hide_window,
            StartDaemon: self._start_daemon,
            StopDaemon: self._stop_daemon,
            RunBackupNow: self._run_backup_now,
            UpdateConfig: self._update_config,
            AddBackupPair: self._add_pair,
            UpdateBackupPair: self._update_pair,
            RemoveBackupPair: self._remove_pair,
            MoveBackupPairUp: self._move_pair_up,
            MoveBackupPairDown: self._move_pair_down,
            ToggleBackupPairEnabled: self._toggle_pair,
            UpdateBackupStatus: self._update_status,
            Exit: self._exit,
        }

        self._reconcile_statuses()

    # -------------------------
    # Read-only views
    # -------------------------

    def state(self) -> AppState:
        with self._state_lock:
            return dataclasses.replace(self._state)

    def statuses(self) -> dict[str, PairStatus]:
        return self.tracker.snapshot()

    # -------------------------
    # Loop
    # -------------------------

    def start(self) -> threading.Thread:
        if self._thread is None:
            self._thread = threading.Thread(target=self.run, name="mirror-vault-control", daemon=True)
            self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        self.logger.info("Control plane started")
        while True:
            command = self.commands.get()
            self.dispatch(command)
            if isinstance(command, Exit):
                break
        self.logger.info("Control plane finished")

    def dispatch(self, command: Command) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            self.logger.error("Unknown command dropped: %r", command)
            return
        name = type(command).__name__
        try:
            handler(command)
        except LockTimeoutError as e:
            self.logger.error("%s abandoned: %s", name, e)
        except Exception:
            self.logger.exception("%s failed", name)

    def _set_state(self, **changes) -> None:
        with self._state_lock:
            for key, value in changes.items():
                setattr(self._state, key, value)

    # -------------------------
    # Window / daemon
    # -------------------------

    def _show_window(self, command: ShowWindow) -> None:
        self._set_state(window_visible=True)
        self.presenter.visibility_changed(True)

    def _hide_window(self, command: HideWindow) -> None:
        self._set_state(window_visible=False)
        self.presenter.visibility_changed(False)

    def _start_daemon(self, command: StartDaemon) -> None:
        self.scheduler.start()
        self._set_state(daemon_running=self.scheduler.is_running)

    def _stop_daemon(self, command: StopDaemon) -> None:
        self.scheduler.stop()
        self._set_state(daemon_running=self.scheduler.is_running)

    def _run_backup_now(self, command: RunBackupNow) -> None:
        log_action(self.logger, "RUN", "manual backup requested")
        snapshot = self.config.snapshot()
        worker = threading.Thread(
            target=run_backup_pass,
            args=(snapshot, self.execute, self.client.report_status, self.presenter, self.logger, "Manual backup"),
            name="mirror-vault-manual",
            daemon=True,
        )
        worker.start()

    # -------------------------
    # Configuration
    # -------------------------

    def _update_config(self, command: UpdateConfig) -> None:
        updated = copy.deepcopy(command.config)
        renumber(updated.backup_pairs)
        with self.config.locked() as slot:
            try:
                self.store.save(updated)
            except ConfigError as e:
                log_action(self.logger, "CONFIG", f"update dropped, could not save: {e}", level=logging.ERROR)
                return
            slot.value = updated
        log_action(self.logger, "CONFIG", "configuration updated")

        self._reconcile_statuses()

        if self.scheduler.is_running:
            log_action(self.logger, "DAEMON", "restarting with the new configuration")
            self.scheduler.stop()
            self.scheduler.start()
            self._set_state(daemon_running=self.scheduler.is_running)

    def _edit_pairs(self, what: str, edit: Callable[[list[BackupPair]], Optional[str]]) -> bool:
        """
        Read-modify-write-persist on a copy of the pair list.

        `edit` mutates the list in place, or returns a reason to reject the
        command. The shared config only changes once the save succeeded.
        """
        with self.config.locked() as slot:
            pairs = copy.deepcopy(slot.value.backup_pairs)
            problem = edit(pairs)
            if problem:
                log_action(self.logger, "PAIR", f"{what} rejected: {problem}", level=logging.WARNING)
                return False
            updated = dataclasses.replace(slot.value, backup_pairs=renumber(pairs))
            try:
                self.store.save(updated)
            except ConfigError as e:
                log_action(self.logger, "PAIR", f"{what} abandoned, could not save: {e}", level=logging.ERROR)
                return False
            slot.value = updated

        self._reconcile_statuses()
        log_action(self.logger, "PAIR", f"{what} done")
        return True

    def _add_pair(self, command: AddBackupPair) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            check = validate_cross(command.source, command.destination, pairs)
            if check.is_error:
                return check.message
            pairs.append(BackupPair(source=command.source, destination=command.destination))
            return None

        self._edit_pairs(f"add {command.source} -> {command.destination}", edit)

    def _update_pair(self, command: UpdateBackupPair) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            if not 0 <= command.index < len(pairs):
                return f"invalid index {command.index}"
            check = validate_cross(command.source, command.destination, pairs, editing_index=command.index)
            if check.is_error:
                return check.message
            pair = pairs[command.index]
            pair.source = command.source
            pair.destination = command.destination
            return None

        self._edit_pairs(f"update #{command.index + 1}", edit)

    def _remove_pair(self, command: RemoveBackupPair) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            if not 0 <= command.index < len(pairs):
                return f"invalid index {command.index}"
            removed = pairs.pop(command.index)
            self.logger.info("Removing pair %s: %s -> %s", removed.id, removed.source, removed.destination)
            return None

        self._edit_pairs(f"remove #{command.index + 1}", edit)

    def _move_pair_up(self, command: MoveBackupPairUp) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            i = command.index
            if not 0 < i < len(pairs):
                return f"cannot move index {i} up"
            pairs[i - 1], pairs[i] = pairs[i], pairs[i - 1]
            return None

        self._edit_pairs(f"move #{command.index + 1} up", edit)

    def _move_pair_down(self, command: MoveBackupPairDown) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            i = command.index
            if not 0 <= i < len(pairs) - 1:
                return f"cannot move index {i} down"
            pairs[i], pairs[i + 1] = pairs[i + 1], pairs[i]
            return None

        self._edit_pairs(f"move #{command.index + 1} down", edit)

    def _toggle_pair(self, command: ToggleBackupPairEnabled) -> None:
        def edit(pairs: list[BackupPair]) -> Optional[str]:
            if not 0 <= command.index < len(pairs):
                return f"invalid index {command.index}"
            pairs[command.index].enabled = command.enabled
            return None

        state = "enable" if command.enabled else "disable"
        self._edit_pairs(f"{state} #{command.index + 1}", edit)

    # -------------------------
    # Status / exit
    # -------------------------

    def _reconcile_statuses(self) -> None:
        ids = self.config.snapshot().pair_ids()
        added, removed = self.tracker.reconcile(ids)
        if added or removed:
            self.logger.debug("Statuses reconciled: +%d -%d", len(added), len(removed))

    def _update_status(self, command: UpdateBackupStatus) -> None:
        if isinstance(command.outcome, Running):
            status = self.tracker.mark_running(command.pair_id)
        else:
            status = self.tracker.record(command.pair_id, command.outcome)
            log_action(
                self.logger,
                "STATUS",
                f"{command.pair_id}: {status.state.value} ({status.success_rate}% of {status.execution_count})",
            )
        self.presenter.status_changed(command.pair_id, status)

    def _exit(self, command: Exit) -> None:
        self.logger.info("Exit requested")
        self._set_state(should_exit=True)
        if self.scheduler.is_running:
            self.scheduler.stop()
        self._set_state(daemon_running=False)
