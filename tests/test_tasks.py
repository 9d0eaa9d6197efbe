import json

import pytest

from tq.database import Database, NotFoundError
from tq.models import TaskStatus
from tq.projects import ProjectsMixin
from tq.tasks import TasksMixin


class _Store(TasksMixin, ProjectsMixin, Database):
    pass


@pytest.fixture
def bare_db():
    store = _Store(":memory:")
    Database.migrate(store)
    yield store
    Database.close(store)


@pytest.fixture
def db(bare_db):
    ProjectsMixin.insert_project(bare_db, "alpha", "~/src/example/alpha", "{}")
    ProjectsMixin.insert_project(bare_db, "beta", "~/src/example/beta", "{}")
    ProjectsMixin.insert_project(bare_db, "gamma", "~/src/example/gamma", "{}")
    return bare_db


def test_insert_task(db):
    task_id = TasksMixin.insert_task(db, 1, "test task", '{"url":"https://example.com"}', "")
    assert task_id >= 1
    task = TasksMixin.get_task(db, task_id)
    assert task.title == "test task"
    assert task.status == TaskStatus.OPEN


def test_insert_task_emits_event(db):
    task_id = TasksMixin.insert_task(db, 1, "test task", "{}", "")
    events = Database.list_events(db, "task", task_id)
    assert len(events) == 1
    assert events[0].event_type == "task.created"
    assert events[0].entity_id == task_id


def test_update_task(db):
    task_id = TasksMixin.insert_task(db, 1, "task to update", "{}", "")
    TasksMixin.update_task(db, task_id, TaskStatus.DONE, "")
    task = TasksMixin.get_task(db, task_id)
    assert task.status == TaskStatus.DONE
    assert isinstance(task.updated_at, str) and task.updated_at


def test_update_task_event_records_transition(db):
    task_id = TasksMixin.insert_task(db, 1, "task", "{}", "")
    TasksMixin.update_task(db, task_id, TaskStatus.ARCHIVED, "obsolete")
    event = Database.list_events(db, "task", task_id)[-1]
    assert event.event_type == "task.status_changed"
    assert json.loads(event.payload) == {"from": "open", "to": "archived", "reason": "obsolete"}


def test_update_task_not_found(db):
    with pytest.raises(NotFoundError):
        TasksMixin.update_task(db, 999, TaskStatus.DONE, "")


def test_update_task_project(db):
    task_id = TasksMixin.insert_task(db, 1, "task to move", "{}", "")
    TasksMixin.update_task_project(db, task_id, 2)
    task = TasksMixin.get_task(db, task_id)
    assert task.project_id == 2
    assert isinstance(task.updated_at, str) and task.updated_at


def test_get_task_not_found(bare_db):
    with pytest.raises(NotFoundError):
        TasksMixin.get_task(bare_db, 999)


@pytest.fixture
def listed(db):
    TasksMixin.insert_task(db, 1, "task A", "{}", "")
    second = TasksMixin.insert_task(db, 1, "task B", "{}", "")
    TasksMixin.insert_task(db, 2, "task C", "{}", "")
    TasksMixin.update_task(db, second, TaskStatus.DONE, "")
    return db


@pytest.mark.parametrize(
    ("project_id", "status", "expected"),
    [
        (0, "", 3),
        (1, "", 2),
        (0, TaskStatus.OPEN, 2),
        (1, TaskStatus.DONE, 1),
    ],
)
def test_list_tasks_filters(listed, project_id, status, expected):
    assert len(TasksMixin.list_tasks(listed, project_id, status, 0)) == expected


def test_list_tasks_limit(listed):
    tasks = TasksMixin.list_tasks(listed, 0, "", 2)
    assert len(tasks) == 2
    assert tasks[0].id > tasks[1].id


def test_list_tasks_by_project(db):
    TasksMixin.insert_task(db, 1, "task A", "{}", "")
    TasksMixin.insert_task(db, 1, "task B", "{}", "")
    TasksMixin.insert_task(db, 2, "task C", "{}", "")
    assert len(TasksMixin.list_tasks_by_project(db, 1)) == 2


def test_insert_task_with_work_dir(db):
    task_id = TasksMixin.insert_task(db, 1, "worktree task", "{}", "/tmp/worktree")
    assert TasksMixin.get_task(db, task_id).work_dir == "/tmp/worktree"


def test_insert_task_default_work_dir(db):
    task_id = TasksMixin.insert_task(db, 1, "default workdir task", "{}", "")
    assert TasksMixin.get_task(db, task_id).work_dir == ""


def test_update_task_work_dir(db):
    task_id = TasksMixin.insert_task(db, 1, "task", "{}", "")
    TasksMixin.update_task_work_dir(db, task_id, "/new/path")
    task = TasksMixin.get_task(db, task_id)
    assert task.work_dir == "/new/path"
    assert isinstance(task.updated_at, str) and task.updated_at


@pytest.mark.parametrize(
    ("initial", "updates", "expected"),
    [
        ('{"existing":"value"}', {"url": "https://example.com"}, '{"existing":"value","url":"https://example.com"}'),
        (
            '{"existing":"value","url":"https://example.com"}',
            {"existing": "new"},
            '{"existing":"new","url":"https://example.com"}',
        ),
        ("{}", {"key": "val"}, '{"key":"val"}'),
    ],
)
def test_merge_task_metadata(db, initial, updates, expected):
    task_id = TasksMixin.insert_task(db, 1, "task", initial, "")
    TasksMixin.merge_task_metadata(db, task_id, updates)
    assert TasksMixin.get_task(db, task_id).metadata == expected


def test_merge_task_metadata_invalid_existing(db):
    task_id = TasksMixin.insert_task(db, 1, "task", "not json", "")
    with pytest.raises(ValueError, match="parse existing metadata"):
        TasksMixin.merge_task_metadata(db, task_id, {"key": "val"})


def test_ensure_task(db):
    first = TasksMixin.ensure_task(db, 1, "my task")
    assert first >= 1
    assert TasksMixin.ensure_task(db, 1, "my task") == first
    TasksMixin.update_task(db, first, TaskStatus.DONE, "")
    assert TasksMixin.ensure_task(db, 1, "my task") > first


def test_get_or_create_triage_task(db):
    task_id = TasksMixin.get_or_create_triage_task(db, 1)
    assert TasksMixin.get_task(db, task_id).title == "triage"
    assert TasksMixin.get_or_create_triage_task(db, 1) == task_id


def test_list_tasks_by_status(db):
    TasksMixin.insert_task(db, 1, "open task", "{}", "")
    done_id = TasksMixin.insert_task(db, 1, "done task", "{}", "")
    TasksMixin.update_task(db, done_id, TaskStatus.DONE, "")
    assert len(TasksMixin.list_tasks_by_status(db, TaskStatus.OPEN)) == 1
    assert len(TasksMixin.list_tasks_by_status(db, TaskStatus.DONE)) == 1