"""
Validation of a candidate backup pair.

Each pair gets three independent results: source, destination and a cross-check
against the other configured pairs. Only ERROR results block a save. Probes
are read-only except the write check, which creates and removes a temp file.
"""

from __future__ import annotations

import enum
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from pathspec import PathSpec

from .config import BackupPair
from .logs import get_logger

FORBIDDEN_CHARS = ("<", ">", '"', "|", "?", "*")

NETWORK_PREFIXES = ("\\\\", "//")

# gitwildmatch patterns over lower-cased, forward-slash paths with the leading
# "/" stripped, so "proc/" only matches at the root
CRITICAL_PATH_PATTERNS = [
    "c:/windows/system32/",
    "c:/windows/syswow64/",
    "c:/program files/windows*/",
    "c:/programdata/microsoft/windows/",
    "c:/system volume information/",
    "c:/$recycle.bin/",
    "c:/recovery/",
    "c:/boot/",
    "c:/efi/",
    "/proc/",
    "/sys/",
    "/dev/",
    "/boot/",
]

_CRITICAL_SPEC = PathSpec.from_lines("gitwildmatch", CRITICAL_PATH_PATTERNS)


class ValidationKind(enum.Enum):
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationResult:
    kind: ValidationKind
    message: str = ""

    @classmethod
    def valid(cls) -> "ValidationResult":
        return cls(ValidationKind.VALID)

    @classmethod
    def warning(cls, message: str) -> "ValidationResult":
        return cls(ValidationKind.WARNING, message)

    @classmethod
    def error(cls, message: str) -> "ValidationResult":
        return cls(ValidationKind.ERROR, message)

    @property
    def is_valid(self) -> bool:
        return self.kind is ValidationKind.VALID

    @property
    def is_warning(self) -> bool:
        return self.kind is ValidationKind.WARNING

    @property
    def is_error(self) -> bool:
        return self.kind is ValidationKind.ERROR


@dataclass(frozen=True)
class PairValidation:
    source: ValidationResult
    destination: ValidationResult
    cross: ValidationResult

    def is_valid(self) -> bool:
        return self.source.is_valid and self.destination.is_valid and self.cross.is_valid

    def has_errors(self) -> bool:
        return self.source.is_error or self.destination.is_error or self.cross.is_error

    def _messages(self, kind: ValidationKind) -> list[str]:
        out = []
        if self.source.kind is kind:
            out.append(f"Source: {self.source.message}")
        if self.destination.kind is kind:
            out.append(f"Destination: {self.destination.message}")
        if self.cross.kind is kind:
            out.append(self.cross.message)
        return out

    def error_messages(self) -> list[str]:
        return self._messages(ValidationKind.ERROR)

    def warning_messages(self) -> list[str]:
        return self._messages(ValidationKind.WARNING)


# -------------------------
# Entry point
# -------------------------

def validate_backup_pair(
    source: str,
    destination: str,
    existing_pairs: Sequence[BackupPair],
    editing_index: Optional[int] = None,
) -> PairValidation:
    return PairValidation(
        source=validate_source(source),
        destination=validate_destination(destination),
        cross=validate_cross(source, destination, existing_pairs, editing_index),
    )


def validate_source(raw: str) -> ValidationResult:
    if not raw:
        return ValidationResult.error("source path cannot be empty")

    bad = check_path_characters(raw)
    if bad:
        return ValidationResult.error(bad)

    if is_network_path(raw):
        bad = check_network_path(raw)
        if bad:
            return ValidationResult.error(bad)
        return ValidationResult.warning("network path detected - check connectivity")

    path = Path(raw)
    if not path.exists():
        return ValidationResult.error("source path does not exist")
    if not path.is_dir():
        return ValidationResult.error("source path must be a directory")
    if not can_list(path):
        return ValidationResult.error("no read permission on the directory")

    if is_critical_system_path(raw):
        return ValidationResult.warning("system directory - make sure this is intended")

    return ValidationResult.valid()


def validate_destination(raw: str) -> ValidationResult:
    if not raw:
        return ValidationResult.error("destination path cannot be empty")

    bad = check_path_characters(raw)
    if bad:
        return ValidationResult.error(bad)

    if is_network_path(raw):
        bad = check_network_path(raw)
        if bad:
            return ValidationResult.error(bad)
        return ValidationResult.warning("network path detected - check connectivity")

    path = Path(raw)
    if path.exists():
        if not path.is_dir():
            return ValidationResult.error("destination exists but is not a directory")
        if not can_write(path):
            return ValidationResult.error("no write permission on the destination directory")
        return ValidationResult.valid()

    parent = path.parent
    if not parent.exists():
        return ValidationResult.error("parent directory of the destination does not exist")
    if not can_write(parent):
        return ValidationResult.error("no write permission on the destination's parent directory")

    return ValidationResult.valid()


def validate_cross(
    source: str,
    destination: str,
    existing_pairs: Sequence[BackupPair],
    editing_index: Optional[int] = None,
) -> ValidationResult:
    src = Path(source)
    dst = Path(destination)

    if src == dst:
        return ValidationResult.error("source and destination cannot be the same")

    if is_nested(src, dst):
        return ValidationResult.error("circular dependency: source is inside destination or vice versa")

    others = [p for i, p in enumerate(existing_pairs) if i != editing_index]

    for pair in others:
        if Path(pair.source) == src and Path(pair.destination) == dst:
            return ValidationResult.error("a backup with these same paths already exists")

    for pair in others:
        if Path(pair.source) == src:
            return ValidationResult.warning(f"source is already backed up to: {pair.destination}")
        if Path(pair.destination) == dst:
            return ValidationResult.warning(f"destination is already used by: {pair.source}")

    for pair in others:
        if Path(pair.destination) == src:
            return ValidationResult.warning(f"source is the destination of: {pair.source}")
        if Path(pair.source) == dst:
            return ValidationResult.warning(f"destination is the source of another backup to: {pair.destination}")

    return ValidationResult.valid()


# -------------------------
# Probes and helpers
# -------------------------

def check_path_characters(raw: str) -> Optional[str]:
    for ch in FORBIDDEN_CHARS:
        if ch in raw:
            return f"invalid character '{ch}' in path"

    if is_network_path(raw):
        return None

    for pos, ch in enumerate(raw):
        if ch != ":":
            continue
        if pos == 1 and raw[0].isascii() and raw[0].isalpha():
            continue
        return "character ':' in an invalid position"

    return None


def is_network_path(raw: str) -> bool:
    return raw.startswith(NETWORK_PREFIXES)


def check_network_path(raw: str) -> Optional[str]:
    parts = raw[2:].replace("/", "\\").split("\\")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return "network path must look like \\\\server\\share"
    return None


def can_list(path: Path) -> bool:
    try:
        with os.scandir(path) as it:
            next(it, None)
        return True
    except OSError:
        return False


def can_write(path: Path) -> bool:
    try:
        fd, name = tempfile.mkstemp(prefix=".mirror_vault_write_test", dir=str(path))
    except OSError:
        return False
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(b"test")
        written = True
    except OSError:
        written = False
    # a test file that cannot be removed again counts as not writable
    return _remove_quietly(name) and written


def _remove_quietly(name: str) -> bool:
    try:
        os.unlink(name)
        return True
    except OSError:
        get_logger().debug("Could not remove write-test file %s", name)
        return False


def is_critical_system_path(raw: str) -> bool:
    norm = raw.replace("\\", "/").lower().lstrip("/")
    if not norm.endswith("/"):
        norm += "/"
    return _CRITICAL_SPEC.match_file(norm)


def is_nested(source: Path, destination: Path) -> bool:
    # only existing paths are compared, siblings under one parent are fine
    if not source.exists() or not destination.exists():
        return False
    try:
        src = source.resolve(strict=True)
        dst = destination.resolve(strict=True)
    except OSError:
        return False
    return _is_within(src, dst) or _is_within(dst, src)


def _is_within(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False
