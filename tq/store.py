"""The complete task-queue store: all reads and writes on one database."""

from __future__ import annotations

from tq.actions import ActionsMixin
from tq.database import Database
from tq.projects import ProjectsMixin
from tq.schedules import SchedulesMixin
from tq.search import SearchMixin
from tq.tasks import TasksMixin


class Store(ActionsMixin, TasksMixin, ProjectsMixin, SchedulesMixin, SearchMixin, Database):
    """A database with every project, task, action, schedule and search operation."""


def open_store(dsn: str = ":memory:") -> Store:
    """Open the database at ``dsn`` and bring its schema up to date."""
    store = Store(dsn)
    try:
        store.migrate()
    except BaseException:
        store.close()
        raise
    return store