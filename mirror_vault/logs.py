"""
Logging setup.

One package logger ("mirror_vault") with two handlers:

- a plain-text file per day (mirror_vault_YYYY-MM-DD.log); a daemon left
  running past midnight moves on to the next day's file
- the console, where the action tag of each record is coloured when the
  stream is a TTY (outcomes green/yellow/red, lifecycle tags cyan, paths bright)

Records carry the tag as `action` and an optional `path_text` so the file
output stays free of colour codes.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO, Union

from colorama import Fore, Style, just_fix_windows_console

LOGGER_NAME = "mirror_vault"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

OUTCOME_TAGS = {
    "SUCCESS": Fore.GREEN,
    "WARNING": Fore.YELLOW,
    "FAILED": Fore.RED,
}

LIFECYCLE_TAGS = ("RUN", "DAEMON", "CONFIG", "PAIR", "STATUS")

ACTION_COLORS = {**OUTCOME_TAGS, **{tag: Fore.CYAN for tag in LIFECYCLE_TAGS}}


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _is_tty(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except ValueError:
        # closed stream
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.use_color:
            return text

        if record.levelno >= logging.ERROR:
            return f"{Fore.RED}{text}{Style.RESET_ALL}"

        action = getattr(record, "action", None)
        color = ACTION_COLORS.get(action or "")
        # the tag leads the message; levelname may spell the same word earlier in the line
        start = text.find(record.message)
        if color and start >= 0 and record.message.startswith(f"{action} |"):
            end = start + len(action)
            text = f"{text[:start]}{color}{action}{Style.RESET_ALL}{text[end:]}"

        path_text = getattr(record, "path_text", None)
        if path_text:
            text = text.replace(path_text, f"{Style.BRIGHT}{path_text}{Style.RESET_ALL}")

        return text


class DailyFileHandler(logging.FileHandler):
    """Writes to <prefix>_<date>.log and switches file when the date changes."""

    def __init__(self, log_dir: Path, prefix: str = LOGGER_NAME, today: Callable[[], dt.date] = dt.date.today):
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self._today = today
        self.day = today()
        super().__init__(self.path_for(self.day), encoding="utf-8")

    def path_for(self, day: dt.date) -> Path:
        return self.log_dir / f"{self.prefix}_{day.isoformat()}.log"

    def emit(self, record: logging.LogRecord) -> None:
        # handle() already holds the handler lock here
        day = self._today()
        if day != self.day:
            self.day = day
            self.baseFilename = os.path.abspath(self.path_for(day))
            if self.stream is not None:
                self.stream.close()
                self.stream = None
        super().emit(record)


def setup_logger(log_dir: Path, level: int = logging.INFO, stream: Optional[TextIO] = None) -> logging.Logger:
    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    if stream is None:
        stream = sys.stdout
    just_fix_windows_console()

    file_handler = DailyFileHandler(log_dir)
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    console = logging.StreamHandler(stream)
    console.setFormatter(ColorizingFormatter(_is_tty(stream), fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    for handler in (file_handler, console):
        handler.setLevel(level)
        logger.addHandler(handler)

    logger.info("Logging to: %s", file_handler.baseFilename)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
    logger.log(level, f"{action} | {message}", extra=extra)
