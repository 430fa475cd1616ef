from __future__ import annotations

import copy
import json
import logging
import os
import sys
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Iterator, Optional

from .errors import ConfigError, LockTimeoutError
from .logs import get_logger, log_action

APP_DIR = Path.home() / ".mirror_vault"
CONFIG_PATH = APP_DIR / "config.json"

DEFAULT_INTERVAL_SEC = 3600
LOCK_TIMEOUT_SEC = 5.0

MAX_THREADS = 128


# -------------------------
# Model
# -------------------------

def new_pair_id() -> str:
    return str(uuid.uuid4())


@dataclass
class BackupPair:
    source: str
    destination: str
    id: str = field(default_factory=new_pair_id)
    enabled: bool = True
    priority: int = 0

    def display_name(self) -> str:
        return f"{PurePath(self.source).name} → {PurePath(self.destination).name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "destination": self.destination,
            "enabled": self.enabled,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "BackupPair":
        return cls(
            id=str(raw.get("id") or new_pair_id()),
            source=str(raw.get("source", "")),
            destination=str(raw.get("destination", "")),
            enabled=bool(raw.get("enabled", True)),
            priority=_clamp(raw.get("priority"), 0, 10**9, 0),
        )


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


@dataclass
class ToolConfig:
    """Parameters passed to the external mirroring tool."""

    mirror_mode: bool = True
    multithreading: int = 8
    fat_file_timing: bool = True
    retry_count: int = 3
    retry_wait: int = 2
    program: str = "robocopy"

    def build_args(self) -> list[str]:
        args: list[str] = []
        if self.mirror_mode:
            args.append("/MIR")
        args.append(f"/MT:{self.multithreading}")
        if self.fat_file_timing:
            args.append("/FFT")
        args.append(f"/R:{self.retry_count}")
        args.append(f"/W:{self.retry_wait}")
        # no per-file progress, no directory listing, console + log output
        args.extend(["/NP", "/NDL", "/TEE"])
        return args

    def preview_command(self, source: str, destination: str) -> str:
        return f'{self.program} "{source}" "{destination}" {" ".join(self.build_args())}'

    def to_dict(self) -> dict:
        return {
            "mirror_mode": self.mirror_mode,
            "multithreading": self.multithreading,
            "fat_file_timing": self.fat_file_timing,
            "retry_count": self.retry_count,
            "retry_wait": self.retry_wait,
            "program": self.program,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ToolConfig":
        default = cls()
        return cls(
            mirror_mode=bool(raw.get("mirror_mode", default.mirror_mode)),
            multithreading=_clamp(raw.get("multithreading"), 1, MAX_THREADS, default.multithreading),
            fat_file_timing=bool(raw.get("fat_file_timing", default.fat_file_timing)),
            retry_count=_clamp(raw.get("retry_count"), 0, 1_000_000, default.retry_count),
            retry_wait=_clamp(raw.get("retry_wait"), 0, 300, default.retry_wait),
            program=str(raw.get("program") or default.program),
        )


@dataclass
class AppConfig:
    backup_pairs: list[BackupPair] = field(default_factory=list)
    check_interval_seconds: int = DEFAULT_INTERVAL_SEC
    robocopy: ToolConfig = field(default_factory=ToolConfig)

    def enabled_pairs(self) -> list[BackupPair]:
        return [p for p in self.backup_pairs if p.enabled]

    def pair_ids(self) -> set[str]:
        return {p.id for p in self.backup_pairs}

    def to_dict(self) -> dict:
        return {
            "backup_pairs": [p.to_dict() for p in self.backup_pairs],
            "check_interval_seconds": self.check_interval_seconds,
            "robocopy": self.robocopy.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "AppConfig":
        if not isinstance(raw, dict):
            raise ConfigError("config root must be a JSON object")
        pairs = [BackupPair.from_dict(p) for p in raw.get("backup_pairs") or [] if isinstance(p, dict)]
        tool = raw.get("robocopy")
        return cls(
            backup_pairs=renumber(pairs),
            check_interval_seconds=_clamp(raw.get("check_interval_seconds"), 1, 10**9, DEFAULT_INTERVAL_SEC),
            robocopy=ToolConfig.from_dict(tool if isinstance(tool, dict) else {}),
        )


def renumber(pairs: list[BackupPair]) -> list[BackupPair]:
    for index, pair in enumerate(pairs):
        pair.priority = index
    return pairs


def default_source_folder() -> str:
    return str(Path.home() / "Documents")


def default_destination_folder() -> str:
    if sys.platform == "win32":
        for drive in "DEF":
            if Path(f"{drive}:\\").exists():
                return f"{drive}:\\Backup"
        return "C:\\Backup"
    return str(Path.home() / "Backup")


def default_config() -> AppConfig:
    cfg = AppConfig()
    cfg.backup_pairs.append(BackupPair(source=default_source_folder(), destination=default_destination_folder()))
    return cfg


# -------------------------
# Persistence
# -------------------------

class ConfigStore:
    """JSON file store for AppConfig."""

    def __init__(self, path: Path = CONFIG_PATH, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or get_logger()

    def load(self, persist_migration: bool = True) -> AppConfig:
        """
        Read the config file, creating it with defaults when absent.

        A legacy single-folder file is migrated to one backup pair. The
        migrated form is written back unless persist_migration is False, in
        which case the caller is responsible for saving it.
        """
        if not self.path.exists():
            self.logger.warning("Config not found, creating defaults: %s", self.path)
            cfg = default_config()
            self.save(cfg)
            return cfg

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigError(f"could not read {self.path}: {e}") from e

        cfg = AppConfig.from_dict(raw)

        legacy_source = raw.get("source_folder") or ""
        legacy_dest = raw.get("destination_folder") or ""
        if not cfg.backup_pairs and legacy_source and legacy_dest:
            log_action(self.logger, "CONFIG", "migrating single-folder config to backup pairs", path=self.path)
            cfg.backup_pairs.append(BackupPair(source=legacy_source, destination=legacy_dest))
            if persist_migration:
                self.save(cfg)

        self.logger.debug("Loaded %d backup pair(s), interval=%ss", len(cfg.backup_pairs), cfg.check_interval_seconds)
        return cfg

    def load_or_default(self) -> AppConfig:
        try:
            return self.load()
        except ConfigError as e:
            self.logger.error("Config error: %s (using defaults)", e)
            return default_config()

    def save(self, config: AppConfig) -> None:
        payload = json.dumps(config.to_dict(), indent=2, ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".tmp", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise ConfigError(f"could not write {self.path}: {e}") from e
        self.logger.debug("Saved config: %s", self.path)


# -------------------------
# Shared handle
# -------------------------

class ConfigSlot:
    def __init__(self, value: AppConfig):
        self.value = value


class SharedConfig:
    """
    The live AppConfig behind one lock.

    Readers take deep copies with snapshot(); writers hold locked() for the
    whole read-modify-write-persist sequence and assign slot.value to commit.
    """

    def __init__(self, config: AppConfig, lock_timeout: float = LOCK_TIMEOUT_SEC):
        self._slot = ConfigSlot(config)
        self._lock = threading.Lock()
        self.lock_timeout = lock_timeout

    @contextmanager
    def locked(self) -> Iterator[ConfigSlot]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError("configuration", self.lock_timeout)
        try:
            yield self._slot
        finally:
            self._lock.release()

    def snapshot(self) -> AppConfig:
        with self.locked() as slot:
            return copy.deepcopy(slot.value)
