import json
import threading

import pytest

from tq.execute import DispatchConfig
from tq.models import ActionStatus
from tq.queue_worker import ExecTmuxChecker, WorkerConfig, dispatch_one, reap_stale_actions, run_worker
from tq.runner import CommandFailedError
from tq.store import open_store


class CountingWorker:
    def __init__(self, result="", error=None):
        self.count = 0
        self.result = result
        self.error = error

    def execute(self, instruction, config, work_dir, action_id, task_id):
        self.count += 1
        if self.error is not None:
            raise self.error
        return self.result


class MockTmuxChecker:
    def __init__(self, windows=(), error=None):
        self.windows = list(windows)
        self.error = error
        self.called_session = None

    def list_windows(self, session):
        self.called_session = session
        if self.error is not None:
            raise self.error
        return self.windows


class FakeRunner:
    def __init__(self, output=b"", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def run(self, name, args, cwd=None, env=None, timeout=None):
        self.calls.append((name, list(args)))
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def store():
    s = open_store(":memory:")
    s.insert_project("alpha", "/tmp/alpha", "{}")
    s.insert_project("beta", "/tmp/beta", "{}")
    s.insert_project("gamma", "/tmp/gamma", "{}")
    yield s
    s.close()


def _run_for(config, seconds):
    stop = threading.Event()
    timer = threading.Timer(seconds, stop.set)
    timer.start()
    try:
        run_worker(config, stop)
    finally:
        timer.cancel()


def test_run_worker_processes_and_stops(store):
    task_id = store.insert_task(1, "Test task", '{"url":"https://example.com"}', "")
    store.insert_action(
        "check-pr-status", task_id, '{"instruction":"check pr status","mode":"noninteractive"}', ActionStatus.PENDING
    )
    worker = CountingWorker(result='{"ok":true}')
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: worker,
        interactive_factory=lambda: worker,
        max_interactive=3,
        poll_interval=0.05,
    )

    _run_for(config, 0.4)

    assert worker.count == 1
    assert store.get_action(1).status == ActionStatus.DONE


def test_run_worker_interactive_limit_enforced(store):
    task_id = store.insert_task(1, "Task", '{"url":"https://example.com"}', "")
    store.insert_action("fix-conflict", task_id, '{"instruction":"fix conflict","mode":"interactive"}', "pending")
    store.insert_action("respond-review", task_id, "{}", ActionStatus.RUNNING)
    store.execute("UPDATE actions SET session_id = 'session-1' WHERE id = 2", ())
    interactive = CountingWorker(result="interactive:session=test")
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: CountingWorker(result='{"ok":true}'),
        interactive_factory=lambda: interactive,
        max_interactive=1,
        poll_interval=0.05,
    )

    _run_for(config, 0.3)

    assert interactive.count == 0
    assert store.get_action(1).status == ActionStatus.PENDING


def test_run_worker_failure_escalation(store):
    task_id = store.insert_task(1, "Task", '{"url":"https://example.com"}', "")
    store.insert_action(
        "check-pr-status", task_id, '{"instruction":"check pr status","mode":"noninteractive"}', "pending"
    )
    worker = CountingWorker(error=TimeoutError("deadline exceeded"))
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: worker,
        interactive_factory=lambda: worker,
        max_interactive=3,
        poll_interval=0.05,
    )

    _run_for(config, 0.3)

    assert store.get_action(1).status == ActionStatus.FAILED


def test_run_worker_failure_creates_investigate_action(store):
    task_id = store.insert_task(1, "Test task", '{"url":"https://example.com"}', "")
    store.insert_action(
        "check-pr-status", task_id, '{"instruction":"check pr status","mode":"noninteractive"}', "pending"
    )
    worker = CountingWorker(error=RuntimeError("something went wrong"))
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: worker,
        interactive_factory=lambda: worker,
        max_interactive=3,
        poll_interval=0.05,
    )

    _run_for(config, 0.4)

    assert store.get_action(1).status == "failed"
    actions = store.list_actions("", None, 0)
    assert len(actions) >= 2
    investigate = actions[0]
    assert "is_investigate_failure" in json.loads(investigate.metadata)
    assert investigate.task_id == task_id


def test_run_worker_remote_dispatch(store):
    task_id = store.insert_task(1, "Remote task", '{"url":"https://example.com"}', "")
    store.insert_action("remote-task", task_id, '{"instruction":"do remote task","mode":"remote"}', "pending")
    remote = CountingWorker(result="remote:session=https://example.com/p/abc")
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: CountingWorker(result='{"ok":true}'),
        interactive_factory=lambda: CountingWorker(result="interactive:action=1"),
        remote_factory=lambda: remote,
        max_interactive=1,
        poll_interval=0.05,
    )

    _run_for(config, 0.4)

    assert remote.count == 1
    assert store.get_action(1).status == ActionStatus.DISPATCHED


def test_run_worker_remote_does_not_count_toward_interactive_limit(store):
    task_id = store.insert_task(1, "Task", '{"url":"https://example.com"}', "")
    store.insert_action("remote-task", task_id, '{"instruction":"do remote task","mode":"remote"}', "pending")
    store.insert_action("fix-conflict", task_id, '{"instruction":"fix conflict","mode":"interactive"}', "pending")
    store.insert_action(
        "respond-review", task_id, '{"instruction":"respond to review","mode":"interactive"}', "running"
    )
    store.execute("UPDATE actions SET session_id = 'session-1' WHERE id = 3", ())
    remote = CountingWorker(result="remote:session=https://example.com")
    interactive = CountingWorker(result="interactive:action=2")
    config = WorkerConfig(
        store=store,
        noninteractive_factory=lambda: CountingWorker(result='{"ok":true}'),
        interactive_factory=lambda: interactive,
        remote_factory=lambda: remote,
        max_interactive=1,
        poll_interval=0.05,
    )

    _run_for(config, 0.4)

    assert remote.count == 1
    assert interactive.count == 0


def _running_with_window(store, session="main", started="datetime('now', '-5 minutes')"):
    task_id = store.insert_task(1, "Task", '{"url":"https://example.com"}', "")
    store.insert_action("fix-conflict", task_id, "{}", ActionStatus.RUNNING)
    store.execute(
        f"UPDATE actions SET session_id = ?, tmux_pane = 'tq-action-1', started_at = {started} WHERE id = 1",
        (session,),
    )


def test_reap_detects_stale(store):
    _running_with_window(store)
    config = WorkerConfig(
        store=store, tmux_checker=MockTmuxChecker(["zsh", "other-window"]), stale_grace_period=30
    )

    assert reap_stale_actions(config) == [1]

    action = store.get_action(1)
    assert action.status == ActionStatus.FAILED
    assert action.result is not None and "stale" in action.result


def test_reap_skips_live_windows(store):
    _running_with_window(store)
    config = WorkerConfig(store=store, tmux_checker=MockTmuxChecker(["zsh", "tq-action-1"]), stale_grace_period=30)

    assert reap_stale_actions(config) == []
    assert store.get_action(1).status == ActionStatus.RUNNING


def test_reap_grace_period(store):
    _running_with_window(store, started="datetime('now')")
    config = WorkerConfig(store=store, tmux_checker=MockTmuxChecker(["zsh"]), stale_grace_period=30)

    reap_stale_actions(config)

    assert store.get_action(1).status == ActionStatus.RUNNING


def test_reap_tmux_error(store):
    _running_with_window(store)
    config = WorkerConfig(
        store=store, tmux_checker=MockTmuxChecker(error=RuntimeError("tmux not available")), stale_grace_period=30
    )

    reap_stale_actions(config)

    assert store.get_action(1).status == ActionStatus.RUNNING


def test_reap_nil_checker(store):
    _running_with_window(store)
    config = WorkerConfig(store=store, tmux_checker=None)

    assert reap_stale_actions(config) == []
    assert store.get_action(1).status == ActionStatus.RUNNING


def test_reap_custom_session(store):
    _running_with_window(store, session="work")
    checker = MockTmuxChecker(["zsh", "tq-action-1"])
    config = WorkerConfig(store=store, tmux_session="work", tmux_checker=checker, stale_grace_period=30)

    reap_stale_actions(config)

    assert checker.called_session == "work"
    assert store.get_action(1).status == ActionStatus.RUNNING


def test_dispatch_one_no_pending(store):
    config = WorkerConfig(
        store=store,
        noninteractive_factory=CountingWorker,
        interactive_factory=CountingWorker,
        poll_interval=0.05,
    )

    assert dispatch_one(config) is False


def test_dispatch_one_deferred_returns_action_to_queue(store):
    task_id = store.insert_task(1, "Task", "{}", "")
    store.insert_action("fix", task_id, '{"instruction":"fix","mode":"interactive"}', "pending")
    store.insert_action("busy", task_id, "{}", "running")
    store.execute("UPDATE actions SET session_id = 'main' WHERE id = 2", ())
    interactive = CountingWorker(result="ok")
    config = WorkerConfig(store=store, interactive_factory=lambda: interactive, max_interactive=1)

    assert dispatch_one(config) is False
    assert interactive.count == 0
    assert store.get_action(1).status == ActionStatus.PENDING


def test_worker_config_is_dispatch_config(store):
    config = WorkerConfig(store=store)
    assert isinstance(config, DispatchConfig)
    assert config.max_interactive == 3


def test_exec_tmux_checker_lists_windows():
    runner = FakeRunner(output=b"zsh\ntq-action-1\n\n")
    checker = ExecTmuxChecker(runner)

    assert checker.list_windows("work") == ["zsh", "tq-action-1"]
    assert runner.calls == [("tmux", ["list-windows", "-t", "work", "-F", "#{window_name}"])]


def test_exec_tmux_checker_error():
    runner = FakeRunner(error=CommandFailedError("tmux: exit status 1", b"no server running"))
    checker = ExecTmuxChecker(runner)

    with pytest.raises(RuntimeError, match="tmux list-windows"):
        checker.list_windows("main")