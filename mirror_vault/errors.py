from __future__ import annotations


class MirrorVaultError(Exception):
    """Base class for errors raised by mirror_vault."""


class ConfigError(MirrorVaultError):
    """The persisted configuration could not be read, parsed or written."""


class LockTimeoutError(MirrorVaultError):
    def __init__(self, what: str, timeout: float):
        super().__init__(f"could not acquire {what} lock within {timeout:.1f}s")
        self.what = what
        self.timeout = timeout
