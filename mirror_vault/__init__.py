"""Interval mirroring of directory pairs through an external tool."""

from .config import AppConfig, BackupPair, ConfigStore, SharedConfig, ToolConfig
from .control import AppState, ControlPlane
from .executor import BackupOutcome, OutcomeKind, execute_backup
from .scheduler import DaemonScheduler
from .status import PairState, PairStatus, StatusTracker
from .validation import PairValidation, ValidationResult, validate_backup_pair

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "AppState",
    "BackupOutcome",
    "BackupPair",
    "ConfigStore",
    "ControlPlane",
    "DaemonScheduler",
    "OutcomeKind",
    "PairState",
    "PairStatus",
    "PairValidation",
    "SharedConfig",
    "StatusTracker",
    "ToolConfig",
    "ValidationResult",
    "execute_backup",
    "validate_backup_pair",
]
