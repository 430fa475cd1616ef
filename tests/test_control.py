import pytest

from mirror_vault.commands import (
    RUNNING,
    AddBackupPair,
    HideWindow,
    MoveBackupPairDown,
    MoveBackupPairUp,
    RemoveBackupPair,
    ShowWindow,
    StartDaemon,
    StopDaemon,
    ToggleBackupPairEnabled,
    UpdateBackupPair,
    UpdateBackupStatus,
    UpdateConfig,
)
from mirror_vault.config import AppConfig
from mirror_vault.errors import ConfigError
from mirror_vault.executor import BackupOutcome
from mirror_vault.status import PairState


def drain(plane):
    while not plane.commands.empty():
        plane.dispatch(plane.commands.get_nowait())


def sources(plane):
    return [p.source for p in plane.config.snapshot().backup_pairs]


def fail_save(monkeypatch, plane):
    def broken(cfg):
        raise ConfigError("disk full")

    monkeypatch.setattr(plane.store, "save", broken)


# -------------------------
# Pair editing
# -------------------------

def test_add_pair_persists_and_creates_pending_status(make_plane, store, dirs):
    plane = make_plane()

    plane.dispatch(AddBackupPair(dirs["src_a"], dirs["dst_a"]))

    pairs = plane.config.snapshot().backup_pairs
    assert [(p.source, p.destination) for p in pairs] == [(dirs["src_a"], dirs["dst_a"])]
    assert store.load().backup_pairs[0].id == pairs[0].id
    assert plane.tracker.get(pairs[0].id).state is PairState.PENDING


@pytest.mark.parametrize("same", ["identical", "duplicate"])
def test_add_rejects_cross_errors(make_plane, pair_factory, dirs, same):
    plane = make_plane(pair_factory("a"))

    if same == "identical":
        plane.dispatch(AddBackupPair(dirs["src_b"], dirs["src_b"]))
    else:
        plane.dispatch(AddBackupPair(dirs["src_a"], dirs["dst_a"]))

    assert sources(plane) == [dirs["src_a"]]
    assert len(plane.tracker) == 1


def test_client_validates_before_queuing(make_plane, dirs):
    plane = make_plane()

    result = plane.client.add_backup_pair("", dirs["dst_a"])

    assert result.has_errors()
    assert plane.commands.empty()


def test_chained_pair_is_accepted_with_warning(make_plane, pair_factory, dirs):
    plane = make_plane(pair_factory("a"))

    result = plane.client.add_backup_pair(dirs["dst_a"], dirs["dst_b"])
    drain(plane)

    assert result.cross.is_warning
    assert sources(plane) == [dirs["src_a"], dirs["dst_a"]]


def test_update_keeps_id_enabled_and_history(make_plane, pair_factory, dirs):
    pairs = pair_factory("a")
    pairs[0].enabled = False
    plane = make_plane(pairs)
    pair_id = pairs[0].id
    plane.dispatch(UpdateBackupStatus(pair_id, BackupOutcome.success(1, 1)))

    plane.dispatch(UpdateBackupPair(0, dirs["src_b"], dirs["dst_b"]))

    updated = plane.config.snapshot().backup_pairs[0]
    assert (updated.id, updated.enabled) == (pair_id, False)
    assert (updated.source, updated.destination) == (dirs["src_b"], dirs["dst_b"])
    assert plane.tracker.get(pair_id).execution_count == 1


def test_invalid_indices_change_nothing(make_plane, pair_factory, store):
    plane = make_plane(pair_factory("a", "b"))
    before = store.path.read_text(encoding="utf-8")

    for command in (
        UpdateBackupPair(5, "/x", "/y"),
        RemoveBackupPair(2),
        RemoveBackupPair(-1),
        ToggleBackupPairEnabled(9, False),
        MoveBackupPairUp(0),
        MoveBackupPairDown(1),
    ):
        plane.dispatch(command)

    assert store.path.read_text(encoding="utf-8") == before


def test_remove_drops_status(make_plane, pair_factory, dirs):
    pairs = pair_factory("a", "b")
    plane = make_plane(pairs)

    plane.dispatch(RemoveBackupPair(0))

    assert sources(plane) == [dirs["src_b"]]
    assert plane.tracker.get(pairs[0].id) is None
    assert set(plane.statuses()) == {pairs[1].id}


def test_add_update_remove_leaves_no_status(make_plane, dirs):
    plane = make_plane()

    plane.dispatch(AddBackupPair(dirs["src_a"], dirs["dst_a"]))
    (added,) = plane.config.snapshot().backup_pairs
    assert added.id in plane.statuses()

    plane.dispatch(UpdateBackupPair(0, dirs["src_b"], dirs["dst_b"]))
    assert plane.config.snapshot().backup_pairs[0].id == added.id
    assert added.id in plane.statuses()

    plane.dispatch(RemoveBackupPair(0))

    assert plane.config.snapshot().backup_pairs == []
    assert added.id not in plane.statuses()
    assert plane.tracker.get(added.id) is None


def test_move_up_then_down(make_plane, pair_factory, dirs):
    plane = make_plane(pair_factory("a", "b", "c"))

    plane.dispatch(MoveBackupPairUp(2))
    assert sources(plane) == [dirs["src_a"], dirs["src_c"], dirs["src_b"]]

    plane.dispatch(MoveBackupPairDown(1))
    assert sources(plane) == [dirs["src_a"], dirs["src_b"], dirs["src_c"]]

    assert [p.priority for p in plane.config.snapshot().backup_pairs] == [0, 1, 2]


def test_toggle_is_idempotent(make_plane, pair_factory):
    plane = make_plane(pair_factory("a"))

    plane.dispatch(ToggleBackupPairEnabled(0, False))
    plane.dispatch(ToggleBackupPairEnabled(0, False))

    assert plane.config.snapshot().backup_pairs[0].enabled is False


def test_failed_save_leaves_config_unchanged(make_plane, pair_factory, dirs, monkeypatch):
    pairs = pair_factory("a")
    plane = make_plane(pairs)
    fail_save(monkeypatch, plane)

    plane.dispatch(AddBackupPair(dirs["src_b"], dirs["dst_b"]))
    plane.dispatch(RemoveBackupPair(0))

    assert sources(plane) == [dirs["src_a"]]
    assert set(plane.statuses()) == {pairs[0].id}


def test_lock_timeout_abandons_command(make_plane, dirs):
    plane = make_plane(lock_timeout=0.05)

    with plane.config.locked():
        plane.dispatch(AddBackupPair(dirs["src_a"], dirs["dst_a"]))

    assert sources(plane) == []


# -------------------------
# Status
# -------------------------

def test_running_then_outcome_counts_once(make_plane, pair_factory, presenter):
    pairs = pair_factory("a")
    plane = make_plane(pairs)
    pair_id = pairs[0].id

    plane.dispatch(UpdateBackupStatus(pair_id, RUNNING))
    assert plane.tracker.get(pair_id).state is PairState.RUNNING
    plane.dispatch(UpdateBackupStatus(pair_id, BackupOutcome.success(2, 10)))

    status = plane.tracker.get(pair_id)
    assert status.execution_count == 1
    assert status.success_rate == 100
    assert presenter.statuses == [(pair_id, PairState.RUNNING), (pair_id, PairState.SUCCESS)]


def test_status_for_unknown_id_is_created(make_plane):
    plane = make_plane()

    plane.dispatch(UpdateBackupStatus("ghost", BackupOutcome.failed("exit code 8")))

    assert plane.tracker.get("ghost").state is PairState.ERROR


# -------------------------
# Whole-config updates
# -------------------------

def test_update_config_replaces_pairs_and_reconciles(make_plane, pair_factory, store):
    old = pair_factory("a")
    plane = make_plane(old)
    new = pair_factory("b", "c")

    plane.dispatch(UpdateConfig(AppConfig(backup_pairs=new, check_interval_seconds=60)))

    assert set(plane.statuses()) == {p.id for p in new}
    assert store.load().check_interval_seconds == 60
    assert [p.priority for p in plane.config.snapshot().backup_pairs] == [0, 1]


def test_update_config_restarts_running_daemon(make_plane, pair_factory, presenter):
    plane = make_plane(pair_factory("a"))
    plane.dispatch(StartDaemon())

    plane.dispatch(UpdateConfig(AppConfig(backup_pairs=pair_factory("b"))))

    titles = [title for _, title, _ in presenter.notifications]
    assert titles.count("Daemon started") == 2
    assert titles.count("Daemon stopped") == 1
    assert plane.state().daemon_running


def test_update_config_save_failure_keeps_old_config(make_plane, pair_factory, dirs, monkeypatch):
    plane = make_plane(pair_factory("a"))
    fail_save(monkeypatch, plane)

    plane.dispatch(UpdateConfig(AppConfig(backup_pairs=pair_factory("b"))))

    assert sources(plane) == [dirs["src_a"]]


# -------------------------
# Window / daemon / loop
# -------------------------

def test_show_and_hide(make_plane, presenter):
    plane = make_plane()

    plane.dispatch(HideWindow())
    assert plane.state().window_visible is False
    plane.dispatch(ShowWindow())

    assert plane.state().window_visible is True
    assert presenter.visibility == [False, True]


def test_start_stop_daemon_updates_state(make_plane, pair_factory):
    plane = make_plane(pair_factory("a"))

    plane.dispatch(StartDaemon())
    assert plane.state().daemon_running
    plane.dispatch(StartDaemon())
    plane.dispatch(StopDaemon())

    assert not plane.state().daemon_running
    assert not plane.scheduler.is_running


def test_exit_stops_daemon_and_loop(make_plane, pair_factory, wait_for):
    plane = make_plane(pair_factory("a"))
    thread = plane.start()

    plane.client.start_daemon()
    assert wait_for(lambda: plane.state().daemon_running)
    plane.client.exit()
    plane.join(timeout=5)

    assert not thread.is_alive()
    state = plane.state()
    assert state.should_exit and not state.daemon_running


def test_run_now_reports_through_queue(make_plane, pair_factory, fake_execute, presenter, wait_for):
    pairs = pair_factory("a", "b")
    plane = make_plane(pairs)
    plane.start()

    plane.client.run_backup_now()

    try:
        assert wait_for(lambda: all(s.execution_count == 1 for s in plane.statuses().values()))
        assert len(fake_execute.calls) == 2
        assert presenter.statuses[0] == (pairs[0].id, PairState.RUNNING)
    finally:
        plane.client.exit()
        plane.join(timeout=5)
