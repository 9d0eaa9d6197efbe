"""Project storage operations."""

from __future__ import annotations

from tq.database import NotFoundError, order_limit
from tq.models import PROJECT_COLUMNS, Project


class ProjectsMixin:
    """Project queries and commands for a Database."""

    def get_project_by_name(self, name: str) -> Project:
        """Return the project called ``name``; raise NotFoundError if absent."""
        row = self.query_one(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE name = ?", (name,))
        return Project.from_row(row)

    def get_project_by_id(self, project_id: int) -> Project:
        """Return the project with ``project_id``; raise NotFoundError if absent."""
        row = self.query_one(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,))
        return Project.from_row(row)

    def list_projects(self, limit: int = 0) -> list[Project]:
        """List projects newest first, at most ``limit`` if positive."""
        query, params = order_limit(f"SELECT {PROJECT_COLUMNS} FROM projects", [], limit)
        return [Project.from_row(row) for row in self.execute(query, params)]

    def insert_project(self, name: str, work_dir: str, metadata: str) -> int:
        """Create a project and return its id."""
        cursor = self.execute(
            "INSERT INTO projects (name, work_dir, metadata) VALUES (?, ?, ?)",
            (name, work_dir, metadata),
        )
        project_id = cursor.lastrowid
        self._emit_event("project", project_id, "project.created", {"name": name, "work_dir": work_dir})
        return project_id

    def delete_project(self, project_id: int) -> None:
        """Delete a project; raise NotFoundError if it does not exist."""
        try:
            (name,) = self.query_one("SELECT name FROM projects WHERE id = ?", (project_id,))
        except NotFoundError as exc:
            raise NotFoundError(f"get project name: project {project_id} not found") from exc
        self.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self._emit_event("project", project_id, "project.deleted", {"name": name})

    def set_dispatch_enabled(self, project_id: int, enabled: bool) -> None:
        """Turn dispatching on or off for one project."""
        cursor = self.execute(
            "UPDATE projects SET dispatch_enabled = ? WHERE id = ?", (int(bool(enabled)), project_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"project {project_id} not found")
        self._emit_event("project", project_id, "project.dispatch_changed", {"enabled": bool(enabled)})

    def set_work_dir(self, project_id: int, work_dir: str) -> None:
        """Change a project's working directory."""
        cursor = self.execute("UPDATE projects SET work_dir = ? WHERE id = ?", (work_dir, project_id))
        if cursor.rowcount == 0:
            raise NotFoundError(f"project {project_id} not found")

    def ensure_project(self, name: str) -> int:
        """Return the id of the project called ``name``, creating it if needed."""
        try:
            return self.get_project_by_name(name).id
        except NotFoundError:
            return self.insert_project(name, "", "{}")

    def ensure_notifications_project(self) -> int:
        """Return the id of the ``notifications`` project, creating it if needed."""
        return self.ensure_project("notifications")

    def set_all_dispatch_enabled(self, enabled: bool) -> None:
        """Turn dispatching on or off for every project."""
        self.execute("UPDATE projects SET dispatch_enabled = ?", (int(bool(enabled)),))