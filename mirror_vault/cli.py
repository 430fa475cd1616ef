"""
mirror-vault command line.

Usage
  mirror-vault
  mirror-vault --start-daemon
  mirror-vault --config ./config.json --log-dir ./logs --watch-config
  mirror-vault --start-daemon --no-console

Without --no-console a small console reads commands from stdin (type "help").
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from .config import APP_DIR, CONFIG_PATH, ConfigStore, SharedConfig
from .control import ControlPlane
from .executor import check_tool
from .logs import setup_logger
from .presentation import LogPresenter
from .status import human_size
from .watcher import ConfigWatcher

HELP = """\
Commands (N is the 1-based pair number):
  list                  show pairs and their last result
  status                show daemon / window state
  start | stop          start or stop the automatic backup daemon
  run                   run all enabled pairs now
  add SRC DST           add a pair (validated first)
  edit N SRC DST        change the paths of pair N
  rm N                  remove pair N
  up N | down N         move pair N
  enable N | disable N  toggle pair N
  interval SECONDS      set the daemon interval
  preview N             show the tool command for pair N
  show | hide           window visibility
  quit                  stop everything and exit
"""


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Mirror directory pairs on an interval with an external tool.")
    p.add_argument("--config", type=str, default=None, help=f"Config file (default: {CONFIG_PATH}).")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--start-daemon", action="store_true", help="Start the backup daemon right away.")
    p.add_argument("--watch-config", action="store_true", help="Reload the config file when it changes on disk.")
    p.add_argument("--no-console", action="store_true", help="Run without the interactive console.")
    p.add_argument("--debug", action="store_true", help="Verbose logging.")
    return p.parse_args(argv)


class Console:
    def __init__(self, plane: ControlPlane, out: Callable[[str], None] = print):
        self.plane = plane
        self.client = plane.client
        self.out = out

    def loop(self, read: Callable[[str], str] = input) -> None:
        self.out('Type "help" for commands.')
        while True:
            try:
                line = read("mirror-vault> ")
            except EOFError:
                return
            if not self.handle_line(line):
                return

    def handle_line(self, line: str) -> bool:
        """Run one console command. Returns False when the console should close."""
        try:
            words = shlex.split(line)
        except ValueError as e:
            self.out(f"Could not parse: {e}")
            return True
        if not words:
            return True

        cmd, args = words[0].lower(), words[1:]
        if cmd in ("quit", "exit"):
            return False
        handler = getattr(self, f"do_{cmd}", None)
        if handler is None:
            self.out(f"Unknown command: {cmd} (try help)")
            return True
        try:
            handler(args)
        except (ValueError, IndexError) as e:
            self.out(f"Bad arguments for {cmd}: {e}")
        return True

    def _index(self, args: list[str]) -> int:
        number = int(args[0])
        if number < 1:
            raise ValueError("pair numbers start at 1")
        return number - 1

    def do_help(self, args: list[str]) -> None:
        self.out(HELP)

    def do_show(self, args: list[str]) -> None:
        self.client.show_window()

    def do_hide(self, args: list[str]) -> None:
        self.client.hide_window()

    def do_start(self, args: list[str]) -> None:
        self.client.start_daemon()

    def do_stop(self, args: list[str]) -> None:
        self.client.stop_daemon()

    def do_run(self, args: list[str]) -> None:
        self.client.run_backup_now()

    def do_status(self, args: list[str]) -> None:
        state = self.plane.state()
        cfg = self.plane.config.snapshot()
        self.out(
            f"daemon: {'running' if state.daemon_running else 'stopped'} | "
            f"window: {'visible' if state.window_visible else 'hidden'} | "
            f"interval: {cfg.check_interval_seconds}s | pairs: {len(cfg.backup_pairs)}"
        )

    def do_list(self, args: list[str]) -> None:
        cfg = self.plane.config.snapshot()
        statuses = self.plane.statuses()
        if not cfg.backup_pairs:
            self.out("No backup pairs configured.")
            return
        for i, pair in enumerate(cfg.backup_pairs, start=1):
            mark = "x" if pair.enabled else " "
            self.out(f"{i:>2}. [{mark}] {pair.source} -> {pair.destination}")
            status = statuses.get(pair.id)
            if status is not None:
                self.out(
                    f"      {status.state.value} | last: {status.format_last_execution()} | "
                    f"rate: {status.success_rate}% of {status.execution_count} | "
                    f"files: {status.files_copied_last or 0} | size: {human_size(status.bytes_transferred_last)}"
                )

    def _print_validation(self, result) -> None:
        for msg in result.error_messages():
            self.out(f"error: {msg}")
        for msg in result.warning_messages():
            self.out(f"warning: {msg}")

    def do_add(self, args: list[str]) -> None:
        source, destination = args[0], args[1]
        result = self.client.add_backup_pair(source, destination)
        self._print_validation(result)
        if not result.has_errors():
            self.out("Pair queued.")

    def do_edit(self, args: list[str]) -> None:
        index = self._index(args)
        result = self.client.update_backup_pair(index, args[1], args[2])
        self._print_validation(result)
        if not result.has_errors():
            self.out("Edit queued.")

    def do_rm(self, args: list[str]) -> None:
        self.client.remove_backup_pair(self._index(args))

    def do_up(self, args: list[str]) -> None:
        self.client.move_backup_pair_up(self._index(args))

    def do_down(self, args: list[str]) -> None:
        self.client.move_backup_pair_down(self._index(args))

    def do_enable(self, args: list[str]) -> None:
        self.client.toggle_backup_pair_enabled(self._index(args), True)

    def do_disable(self, args: list[str]) -> None:
        self.client.toggle_backup_pair_enabled(self._index(args), False)

    def do_interval(self, args: list[str]) -> None:
        seconds = int(args[0])
        if seconds < 1:
            raise ValueError("interval must be at least 1 second")
        cfg = self.plane.config.snapshot()
        cfg.check_interval_seconds = seconds
        self.client.update_config(cfg)

    def do_preview(self, args: list[str]) -> None:
        cfg = self.plane.config.snapshot()
        pair = cfg.backup_pairs[self._index(args)]
        self.out(cfg.robocopy.preview_command(pair.source, pair.destination))


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    log_dir = Path(args.log_dir).expanduser() if args.log_dir else APP_DIR / "logs"
    logger = setup_logger(log_dir, level=logging.DEBUG if args.debug else logging.INFO)

    store = ConfigStore(Path(args.config).expanduser() if args.config else CONFIG_PATH, logger)
    shared = SharedConfig(store.load_or_default())
    logger.info("Config: %s", store.path)
    check_tool(shared.snapshot().robocopy, logger)

    plane = ControlPlane(store, shared, LogPresenter(logger), logger=logger)
    watcher = ConfigWatcher(store, shared, plane.client, logger) if args.watch_config else None

    plane.start()
    if watcher is not None:
        watcher.start()
    if args.start_daemon:
        plane.client.start_daemon()

    try:
        if args.no_console:
            logger.info("Running headless (Ctrl+C to stop)")
            while not plane.state().should_exit:
                time.sleep(0.5)
        else:
            Console(plane).loop()
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        if watcher is not None:
            watcher.stop()
        plane.client.exit()
        plane.join(timeout=120)
        logger.info("Stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
