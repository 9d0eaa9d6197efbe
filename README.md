# tq

`tq` is a small task queue kept in a single SQLite file. Work is organised into
**projects**, **tasks** and **actions**:

- a *project* has a name, a default working directory and a switch that turns
  dispatching on or off;
- a *task* belongs to a project, may have its own working directory, and is
  `open`, `done` or `archived` (`tq.models.TaskStatus`);
- an *action* belongs to a task and carries JSON metadata holding an
  `instruction` and, optionally, a `mode`, a `permission_mode` and a
  `worktree` flag. Its status (`tq.models.ActionStatus`) is one of `pending`,
  `running`, `dispatched`, `done`, `failed` and `cancelled`.

Every change to a project, task, action or schedule is written to an event
log, readable with `store.list_events(entity_type, entity_id)` and
`store.list_recent_events(limit)`.

## Using the store

`tq.store.open_store(dsn)` opens (or creates) the database and brings its
schema up to date. The returned `Store` is a context manager that closes the
connection on exit.

```python
from tq.store import open_store

with open_store("tq.db") as store:
    project_id = store.ensure_project("website")
    task_id = store.insert_task(project_id, "Fix login bug", "{}", "")
    store.insert_action(
        "Investigate login",
        task_id,
        '{"instruction": "Find out why login fails", "mode": "noninteractive"}',
        "pending",
    )

    action = store.next_pending()        # claims the oldest pending action
    print(action.title, action.status)   # Investigate login running

    store.mark_done(action.id, "cookie domain was wrong")

    for hit in store.search("login"):
        print(hit.entity_type, hit.entity_id, hit.field, hit.snippet)
```

`open_store(":memory:")` gives a throw-away in-memory store, handy in tests.

- Looking up a row that does not exist raises `tq.database.NotFoundError`.
- `insert_action` raises `ValueError` for an unknown status.
- `claim_pending(action_id)` claims one specific action and raises
  `ValueError` if it is not pending; `mark_dispatched` raises `ValueError`
  if the action is not running.
- `next_pending()` only considers actions of projects with dispatching
  enabled (`set_dispatch_enabled`, `set_all_dispatch_enabled`), and returns
  `None` when there is nothing to claim.
- `merge_task_metadata` and `merge_action_metadata` merge a dict into the
  stored JSON metadata, overwriting existing keys.
- `search(keyword)` matches task titles and metadata and action titles,
  results and metadata case-insensitively, treats `%` and `_` literally,
  returns at most 500 hits and cuts each hit to a snippet of 40 characters
  on either side of the keyword.

### Filtering by day

Timestamps are stored in UTC. `Action.matches_date` and `Task.matches_date`
compare against a local `YYYY-MM-DD` date. `tq.models.filter_by_date` keeps
actions touched on that day, and `tq.models.filter_for_open_task` keeps those
plus every action still pending, running or dispatched. An empty date keeps
everything.

## Schedules

```python
from datetime import datetime, timezone

from tq.scheduler import check_schedules

store.insert_schedule(task_id, "/inbox-zero", "Inbox Zero", "0 */3 * * *", "{}")
new_action_ids = check_schedules(store, datetime.now(timezone.utc))
```

Cron expressions (`tq.cron.parse_cron`) have five fields: minute, hour, day
of month, month and day of week, with `*`, lists, ranges, steps and month and
weekday names. A schedule fires when the next time after its last run (or its
creation) has passed; the new action's metadata is the schedule's metadata
plus its `instruction` and `schedule_id`. A schedule is skipped while an
action it created is still pending, running or dispatched, and it switches
itself off once its task is `done` or `archived`.

## Dispatching

`tq.execute.execute_action(config, action, before_interactive)` reads the
action's metadata and hands the instruction to a worker chosen by its mode:

| mode             | worker                           | what happens                                                                 |
|------------------|----------------------------------|------------------------------------------------------------------------------|
| `interactive`    | `tq.interactive.InteractiveWorker` | opens tmux window `tq-action-<id>` and types a `claude` command into it (the default mode) |
| `noninteractive` | `tq.noninteractive.NonInteractiveWorker` | runs `claude -p ... --output-format json` with a 300 s timeout; the action is marked `done` with the result |
| `remote`         | `tq.remote.RemoteWorker`         | runs `claude --remote` under `script`; the action is marked `dispatched` and the session URL is stored in its metadata |

Workers are built from `tq.execute.DispatchConfig` factories and run commands
through a `CommandRunner`; `tq.runner.ExecRunner` runs them as child
processes with `CLAUDECODE` removed from the environment and `TQ_ACTION_ID`
and `TQ_TASK_ID` set. The working directory is the task's, else the
project's, else `.`, with a leading `~/` expanded.

A worker failure marks the action `failed` and raises
`tq.execute.ActionFailedError`. An action without an instruction is marked
`failed` and `ValueError` is raised. If `before_interactive` raises
`tq.execute.InteractiveDeferred`, the action goes back to `pending`.

### Failures

When an action fails, `tq.investigate.create_investigate_failure_action`
queues a follow-up action titled `Investigate failure of action #<id>` on the
same task, with the failure text in its metadata. Only one active follow-up
is kept per failed action, and failures of follow-ups do not spawn further
follow-ups.

## Running the queue

```python
import threading

from tq.execute import DispatchConfig  # noqa: F401  (WorkerConfig extends it)
from tq.interactive import InteractiveWorker
from tq.noninteractive import NonInteractiveWorker
from tq.queue_worker import ExecTmuxChecker, WorkerConfig, run_worker
from tq.remote import RemoteWorker
from tq.runner import ExecRunner

runner = ExecRunner()
config = WorkerConfig(
    store=store,
    interactive_factory=lambda: InteractiveWorker(runner, "main"),
    noninteractive_factory=lambda: NonInteractiveWorker(runner),
    remote_factory=lambda: RemoteWorker(runner),
    tmux_checker=ExecTmuxChecker(runner),
)
stop = threading.Event()
run_worker(config, stop)   # returns once stop is set
```

Each round `run_worker` writes a heartbeat, marks interactive actions whose
tmux window has gone as failed (`reap_stale_actions`, after a 30 s grace
period), checks schedules and dispatches the next pending action
(`dispatch_one`). It sleeps for `poll_interval` (10 s by default) when there
was nothing to do. At most `max_interactive` (3 by default) interactive
sessions run at once; further interactive actions wait in the queue. Remote
actions do not count toward that limit. `store.is_worker_running(threshold)`
reports whether a heartbeat was written within the threshold (a `timedelta`
or seconds).

## What this package does not do

There is no command-line program: the queue is used from Python only. The
`tq action ...` commands mentioned in the instructions given to sessions are
not provided here, so a session has to report back by other means that call
the store.