import threading
import time

from mirror_vault.commands import RUNNING
from mirror_vault.config import AppConfig, SharedConfig
from mirror_vault.executor import BackupOutcome
from mirror_vault.logs import get_logger
from mirror_vault.presentation import NotificationKind
from mirror_vault.scheduler import DaemonScheduler, RunSummary, SchedulerState, run_backup_pass, run_pairs


class Reports:
    def __init__(self):
        self.items = []
        self._guard = threading.Lock()

    def __call__(self, pair_id, outcome):
        with self._guard:
            self.items.append((pair_id, outcome))


def test_empty_pass_notifies_and_runs_nothing(presenter, fake_execute):
    reports = Reports()

    result = run_backup_pass(AppConfig(), fake_execute, reports, presenter, get_logger(), "Manual backup")

    assert result is None
    assert fake_execute.calls == []
    assert reports.items == []
    assert presenter.notifications[0][0] is NotificationKind.WARNING


def test_only_disabled_pairs_counts_as_empty(presenter, fake_execute, pair_factory):
    pairs = pair_factory("a")
    pairs[0].enabled = False

    assert run_backup_pass(AppConfig(backup_pairs=pairs), fake_execute, Reports(), presenter, get_logger(), "x") is None
    assert fake_execute.calls == []


def test_pairs_run_in_order_and_report_running_then_outcome(fake_execute, pair_factory, dirs):
    pairs = pair_factory("a", "b", "c")
    pairs[1].enabled = False
    reports = Reports()

    summary = run_pairs(pairs, AppConfig().robocopy, fake_execute, reports, get_logger())

    assert [src for src, _ in fake_execute.calls] == [dirs["src_a"], dirs["src_c"]]
    assert reports.items == [
        (pairs[0].id, RUNNING),
        (pairs[0].id, fake_execute.default),
        (pairs[2].id, RUNNING),
        (pairs[2].id, fake_execute.default),
    ]
    assert summary == RunSummary(success=2)


def test_executor_exception_becomes_failure_and_run_continues(fake_execute, pair_factory, dirs):
    pairs = pair_factory("a", "b")
    fake_execute.by_source[dirs["src_a"]] = RuntimeError("boom")
    reports = Reports()

    summary = run_pairs(pairs, AppConfig().robocopy, fake_execute, reports, get_logger())

    failed = reports.items[1][1]
    assert not failed.counts_as_success
    assert failed.message == "critical error: boom"
    assert len(fake_execute.calls) == 2
    assert (summary.success, summary.failures) == (1, 1)


def test_stop_event_checked_between_pairs(fake_execute, pair_factory):
    stop = threading.Event()
    reports = Reports()

    def stopping_execute(source, destination, tool):
        stop.set()
        return fake_execute(source, destination, tool)

    summary = run_pairs(pair_factory("a", "b"), AppConfig().robocopy, stopping_execute, reports, get_logger(), stop)

    assert summary.interrupted
    assert summary.total == 1
    assert len(fake_execute.calls) == 1


def test_summary_notification_kinds(presenter, fake_execute, pair_factory, dirs):
    pairs = pair_factory("a", "b")
    cfg = AppConfig(backup_pairs=pairs)

    run_backup_pass(cfg, fake_execute, Reports(), presenter, get_logger(), "Manual backup")
    fake_execute.by_source[dirs["src_b"]] = BackupOutcome.warning("extra files")
    run_backup_pass(cfg, fake_execute, Reports(), presenter, get_logger(), "Manual backup")
    fake_execute.by_source[dirs["src_a"]] = BackupOutcome.failed("exit code 16")
    run_backup_pass(cfg, fake_execute, Reports(), presenter, get_logger(), "Manual backup")

    kinds = [kind for kind, _, _ in presenter.notifications]
    assert kinds == [NotificationKind.SUCCESS, NotificationKind.WARNING, NotificationKind.ERROR]
    assert "2 backup(s) completed" in presenter.notifications[0][2]


def test_start_and_stop_are_idempotent(presenter, fake_execute):
    shared = SharedConfig(AppConfig(check_interval_seconds=3600))
    scheduler = DaemonScheduler(shared, Reports(), presenter, fake_execute)

    assert scheduler.state is SchedulerState.STOPPED
    assert scheduler.stop() is False
    assert scheduler.start() is True
    assert scheduler.start() is False
    assert scheduler.state is SchedulerState.RUNNING
    assert scheduler.stop() is True
    assert scheduler.stop() is False

    titles = [title for _, title, _ in presenter.notifications]
    assert titles.count("Daemon started") == 1
    assert titles.count("Daemon stopped") == 1


def test_stop_interrupts_long_sleep(presenter, fake_execute, pair_factory, wait_for):
    shared = SharedConfig(AppConfig(backup_pairs=pair_factory("a"), check_interval_seconds=3600))
    scheduler = DaemonScheduler(shared, Reports(), presenter, fake_execute)
    scheduler.start()
    assert wait_for(lambda: len(fake_execute.calls) == 1)

    started = time.monotonic()
    scheduler.stop()

    assert time.monotonic() - started < 2.0
    assert not scheduler.is_running


def test_daemon_reads_current_pairs_each_tick(presenter, fake_execute, pair_factory, dirs, wait_for):
    shared = SharedConfig(AppConfig(backup_pairs=pair_factory("a"), check_interval_seconds=1))
    scheduler = DaemonScheduler(shared, Reports(), presenter, fake_execute)
    scheduler.start()
    try:
        assert wait_for(lambda: (dirs["src_a"], dirs["dst_a"]) in fake_execute.calls)
        with shared.locked() as slot:
            slot.value = AppConfig(backup_pairs=pair_factory("b"), check_interval_seconds=1)
        assert wait_for(lambda: (dirs["src_b"], dirs["dst_b"]) in fake_execute.calls)
    finally:
        scheduler.stop()


def test_daemon_keeps_ticking_after_executor_errors(presenter, pair_factory, wait_for):
    calls = []

    def flaky(source, destination, tool):
        calls.append(source)
        raise OSError("disk gone")

    shared = SharedConfig(AppConfig(backup_pairs=pair_factory("a"), check_interval_seconds=1))
    scheduler = DaemonScheduler(shared, Reports(), presenter, flaky)
    scheduler.start()
    try:
        assert wait_for(lambda: len(calls) >= 2)
    finally:
        scheduler.stop()
