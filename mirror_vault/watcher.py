from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .commands import CommandClient
from .config import ConfigStore, SharedConfig
from .errors import ConfigError, LockTimeoutError
from .logs import get_logger, log_action


class ConfigWatcher(FileSystemEventHandler):
    """
    Reloads the config file when it changes on disk and queues UpdateConfig.

    Our own saves write the same content the control plane already holds, so
    they compare equal and are ignored.
    """

    def __init__(
        self,
        store: ConfigStore,
        config: SharedConfig,
        client: CommandClient,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.config = config
        self.client = client
        self.logger = logger or get_logger()
        self.config_path = store.path.resolve()
        self._observer: Optional[Observer] = None

    def _is_config(self, raw_path) -> bool:
        if not raw_path:
            return False
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode(errors="replace")
        try:
            return Path(raw_path).resolve() == self.config_path
        except OSError:
            return False

    def on_created(self, event):
        if not event.is_directory and self._is_config(event.src_path):
            self.reload()

    def on_modified(self, event):
        if not event.is_directory and self._is_config(event.src_path):
            self.reload()

    def on_moved(self, event):
        if not event.is_directory and self._is_config(event.dest_path):
            self.reload()

    def reload(self) -> bool:
        if not self.store.path.exists():
            return False
        try:
            # the UpdateConfig queued below does any save, on the control-plane thread
            loaded = self.store.load(persist_migration=False)
            current = self.config.snapshot()
        except (ConfigError, LockTimeoutError) as e:
            log_action(self.logger, "CONFIG", f"reload skipped: {e}", path=self.store.path, level=logging.WARNING)
            return False

        if loaded.to_dict() == current.to_dict():
            return False

        log_action(self.logger, "CONFIG", "config file changed on disk, reloading", path=self.store.path)
        self.client.update_config(loaded)
        return True

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self, str(self.config_path.parent), recursive=False)
        observer.start()
        self._observer = observer
        self.logger.info("Watching config: %s", self.config_path)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=10)
        self._observer = None
