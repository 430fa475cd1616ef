import json

from watchdog.events import FileModifiedEvent, FileMovedEvent

from mirror_vault.commands import UpdateConfig
from mirror_vault.config import AppConfig
from mirror_vault.watcher import ConfigWatcher


def queued(plane):
    out = []
    while not plane.commands.empty():
        out.append(plane.commands.get_nowait())
    return out


def test_reload_queues_update_when_file_differs(make_plane, store, pair_factory):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    store.save(AppConfig(backup_pairs=pair_factory("a"), check_interval_seconds=42))

    assert watcher.reload() is True

    (command,) = queued(plane)
    assert isinstance(command, UpdateConfig)
    assert command.config.check_interval_seconds == 42


def test_reload_of_legacy_file_leaves_saving_to_control_plane(make_plane, store):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    legacy = json.dumps({"source_folder": "/old/src", "destination_folder": "/old/dst", "check_interval_seconds": 60})
    store.path.write_text(legacy, encoding="utf-8")

    assert watcher.reload() is True

    assert store.path.read_text(encoding="utf-8") == legacy
    (command,) = queued(plane)
    assert [(p.source, p.destination) for p in command.config.backup_pairs] == [("/old/src", "/old/dst")]

    plane.dispatch(command)
    assert "source_folder" not in json.loads(store.path.read_text(encoding="utf-8"))


def test_reload_ignores_unchanged_file(make_plane, store):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)

    assert watcher.reload() is False
    assert queued(plane) == []


def test_reload_skips_malformed_file(make_plane, store):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    store.path.write_text("{broken", encoding="utf-8")

    assert watcher.reload() is False
    assert queued(plane) == []


def test_events_for_other_files_are_ignored(make_plane, store, tmp_path):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    store.save(AppConfig(check_interval_seconds=7))

    watcher.on_modified(FileModifiedEvent(str(tmp_path / "settings" / "other.json")))
    assert queued(plane) == []

    watcher.on_modified(FileModifiedEvent(str(store.path)))
    assert len(queued(plane)) == 1


def test_atomic_replace_is_seen_as_move(make_plane, store):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    store.save(AppConfig(check_interval_seconds=7))

    watcher.on_moved(FileMovedEvent(str(store.path.parent / "tmp123"), str(store.path)))

    assert len(queued(plane)) == 1


def test_observer_picks_up_saves(make_plane, store, wait_for):
    plane = make_plane()
    watcher = ConfigWatcher(store, plane.config, plane.client)
    watcher.start()
    try:
        store.save(AppConfig(check_interval_seconds=99))
        assert wait_for(lambda: not plane.commands.empty())
    finally:
        watcher.stop()
