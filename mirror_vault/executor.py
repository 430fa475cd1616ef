"""
Runs the external mirroring tool for one pair and classifies the result.

Classification uses only the exit code (robocopy contract):
  0, 1    success
  2 .. 7  warning (extra and/or mismatched items)
  8+      failure
Files/bytes counters are recovered from the summary table on success. That
parsing is best effort: a field that cannot be read is reported as 0.
"""

from __future__ import annotations

import enum
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ToolConfig
from .logs import get_logger, log_action

WARNING_MESSAGES = {
    2: "Extra files/dirs in destination",
    3: "Files copied + extra files in destination",
    4: "Some mismatched files/dirs",
    5: "Files copied + some mismatched",
    6: "Extra + mismatched files",
    7: "Files copied + extra + mismatched",
}

FILES_LABELS = ("Files", "Archivos")
BYTES_LABEL = "Bytes"

UNIT_MULTIPLIERS = {
    "k": 1024,
    "m": 1024 ** 2,
    "g": 1024 ** 3,
    "t": 1024 ** 4,
}

CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0x08000000)


class OutcomeKind(enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"


@dataclass(frozen=True)
class BackupOutcome:
    kind: OutcomeKind
    files_copied: int = 0
    bytes_transferred: int = 0
    message: str = ""

    @classmethod
    def success(cls, files_copied: int = 0, bytes_transferred: int = 0) -> "BackupOutcome":
        return cls(OutcomeKind.SUCCESS, files_copied=files_copied, bytes_transferred=bytes_transferred)

    @classmethod
    def warning(cls, message: str) -> "BackupOutcome":
        return cls(OutcomeKind.WARNING, message=message)

    @classmethod
    def failed(cls, message: str = "") -> "BackupOutcome":
        return cls(OutcomeKind.FAILED, message=message)

    @property
    def counts_as_success(self) -> bool:
        return self.kind is not OutcomeKind.FAILED


# -------------------------
# Classification / parsing
# -------------------------

def classify_exit_code(exit_code: int) -> BackupOutcome:
    if exit_code in (0, 1):
        return BackupOutcome.success()
    if exit_code in WARNING_MESSAGES:
        return BackupOutcome.warning(WARNING_MESSAGES[exit_code])
    return BackupOutcome.failed(f"exit code {exit_code}")


def parse_size(magnitude: str, unit: Optional[str] = None) -> int:
    value = float(magnitude)
    if unit:
        value *= UNIT_MULTIPLIERS[unit.lower()]
    # the table shows one decimal, "14.4 k" is 14745.6 bytes and reads as 14746
    return int(round(value))


def _size_values(fields: list[str]) -> list[tuple[str, Optional[str]]]:
    values: list[tuple[str, Optional[str]]] = []
    i = 0
    while i < len(fields):
        unit = None
        if i + 1 < len(fields) and fields[i + 1].lower() in UNIT_MULTIPLIERS:
            unit = fields[i + 1]
        values.append((fields[i], unit))
        i += 2 if unit else 1
    return values


def _summary_row(line: str) -> tuple[str, str]:
    """Split "   Files :  2  1 ..." into ("Files", "  2  1 ..."). The label may carry spaces before the colon."""
    label, sep, rest = line.partition(":")
    if not sep:
        return "", ""
    return label.strip(), rest


def parse_stats(stdout: str, logger: Optional[logging.Logger] = None) -> tuple[int, int]:
    """Return (files copied, bytes copied) from the tool's summary table."""
    logger = logger or get_logger()
    files_copied = 0
    bytes_copied = 0

    for line in stdout.splitlines():
        label, rest = _summary_row(line)

        if label in FILES_LABELS:
            fields = rest.split()
            try:
                files_copied = int(fields[1])
            except (IndexError, ValueError):
                # also hit by the "Files : *.*" row of the job header
                logger.debug("Unparseable files row, using 0: %r", line)

        elif label == BYTES_LABEL:
            values = _size_values(rest.split())
            try:
                bytes_copied = parse_size(*values[1])
            except (IndexError, ValueError, KeyError):
                logger.debug("Unparseable bytes row, using 0: %r", line)

    return files_copied, bytes_copied


# -------------------------
# Execution
# -------------------------

def tool_available(program: str) -> bool:
    return shutil.which(program) is not None


def check_tool(tool: ToolConfig, logger: Optional[logging.Logger] = None) -> bool:
    """Warn at startup when the mirroring program cannot be found on PATH."""
    logger = logger or get_logger()
    if tool_available(tool.program):
        logger.debug("Found %s at %s", tool.program, shutil.which(tool.program))
        return True
    log_action(
        logger,
        "WARNING",
        f"{tool.program} not found on PATH, every backup will fail until it is installed",
        level=logging.WARNING,
    )
    return False


def _creation_flags() -> int:
    return CREATE_NO_WINDOW if sys.platform == "win32" else 0


def execute_backup(
    source: Path,
    destination: Path,
    tool: ToolConfig,
    logger: Optional[logging.Logger] = None,
) -> BackupOutcome:
    logger = logger or get_logger()
    source = Path(source)
    destination = Path(destination)

    log_action(logger, "RUN", f"{source} -> {destination}", path=source)

    if not source.exists():
        log_action(logger, "FAILED", f"source does not exist: {source}", path=source, level=logging.ERROR)
        return BackupOutcome.failed("source does not exist")

    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        log_action(logger, "FAILED", f"could not create destination {destination} | {e}", path=destination, level=logging.ERROR)
        return BackupOutcome.failed(f"could not create destination: {e}")

    cmd = [tool.program, str(source), str(destination), *tool.build_args()]
    logger.debug("Command: %s", cmd)

    try:
        result = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            creationflags=_creation_flags(),
        )
    except (OSError, subprocess.SubprocessError) as e:
        log_action(logger, "FAILED", f"could not run {tool.program} | {e}", level=logging.ERROR)
        return BackupOutcome.failed(f"could not run {tool.program}: {e}")

    exit_code = result.returncode
    stdout = result.stdout or ""
    stderr = result.stderr or ""
    logger.info("%s finished with exit code %d", tool.program, exit_code)
    if stdout:
        logger.debug("stdout: %s", stdout.strip())

    outcome = classify_exit_code(exit_code)
    if stderr and outcome.kind is OutcomeKind.FAILED:
        logger.warning("stderr: %s", stderr.strip())

    if outcome.kind is OutcomeKind.SUCCESS:
        files_copied, bytes_copied = parse_stats(stdout, logger)
        outcome = BackupOutcome.success(files_copied, bytes_copied)
    return outcome
