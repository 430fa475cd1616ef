"""Shared fixtures: temp config store, fake executor, recording presenter."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from mirror_vault.config import AppConfig, BackupPair, ConfigStore, SharedConfig
from mirror_vault.control import ControlPlane
from mirror_vault.executor import BackupOutcome
from mirror_vault.presentation import Presenter


class RecordingPresenter(Presenter):
    def __init__(self):
        self.notifications = []
        self.visibility = []
        self.statuses = []

    def visibility_changed(self, visible):
        self.visibility.append(visible)

    def notify(self, kind, title, message):
        self.notifications.append((kind, title, message))

    def status_changed(self, pair_id, status):
        self.statuses.append((pair_id, status.state))


class FakeExecutor:
    """Stands in for execute_backup; records calls in order."""

    def __init__(self, default=None):
        self.default = default or BackupOutcome.success(1, 100)
        self.by_source = {}
        self.calls = []
        self._guard = threading.Lock()

    def __call__(self, source: Path, destination: Path, tool):
        with self._guard:
            self.calls.append((str(source), str(destination)))
        outcome = self.by_source.get(str(source), self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def fake_execute() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "settings" / "config.json")


@pytest.fixture
def dirs(tmp_path: Path) -> dict:
    out = {}
    for name in ("src_a", "src_b", "src_c", "dst_a", "dst_b", "dst_c"):
        d = tmp_path / "data" / name
        d.mkdir(parents=True)
        out[name] = str(d)
    return out


@pytest.fixture
def make_plane(store, presenter, fake_execute):
    planes = []

    def _make(pairs=None, interval=3600, lock_timeout=5.0) -> ControlPlane:
        cfg = AppConfig(backup_pairs=list(pairs or []), check_interval_seconds=interval)
        store.save(cfg)
        plane = ControlPlane(store, SharedConfig(cfg, lock_timeout=lock_timeout), presenter, fake_execute)
        planes.append(plane)
        return plane

    yield _make

    for plane in planes:
        if plane.scheduler.is_running:
            plane.scheduler.stop()


@pytest.fixture
def pair_factory(dirs):
    def _pairs(*names) -> list:
        return [BackupPair(source=dirs[f"src_{n}"], destination=dirs[f"dst_{n}"]) for n in names]

    return _pairs


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
