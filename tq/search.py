"""Keyword search across task and action text."""

from __future__ import annotations

from tq.models import SearchResult
from tq.timeutil import format_local

SNIPPET_CONTEXT = 40
SEARCH_LIMIT = 500

_SEARCH_QUERY = rf"""
    SELECT 'task' AS entity_type, t.id AS entity_id, t.id AS task_id, 'title' AS field,
           t.title AS value, t.status, t.created_at
    FROM tasks t WHERE t.title LIKE '%' || ? || '%' ESCAPE '\'
    UNION ALL
    SELECT 'task', t.id, t.id, 'metadata', t.metadata, t.status, t.created_at
    FROM tasks t WHERE t.metadata LIKE '%' || ? || '%' ESCAPE '\'
    UNION ALL
    SELECT 'action', a.id, a.task_id, 'title', a.title, a.status, a.created_at
    FROM actions a WHERE a.title LIKE '%' || ? || '%' ESCAPE '\'
    UNION ALL
    SELECT 'action', a.id, a.task_id, 'result', COALESCE(a.result, ''), a.status, a.created_at
    FROM actions a WHERE COALESCE(a.result, '') LIKE '%' || ? || '%' ESCAPE '\'
    UNION ALL
    SELECT 'action', a.id, a.task_id, 'metadata', a.metadata, a.status, a.created_at
    FROM actions a WHERE a.metadata LIKE '%' || ? || '%' ESCAPE '\'
    ORDER BY task_id DESC, entity_id DESC
    LIMIT {SEARCH_LIMIT}
"""


def extract_snippet(value: str, keyword: str, context_chars: int) -> str:
    """Cut ``value`` down to the keyword with ``context_chars`` characters on each side."""
    normalized = value.replace("\n", " ")
    index = normalized.lower().find(keyword.lower())
    if index < 0:
        if len(normalized) > context_chars * 2:
            return normalized[: context_chars * 2] + "..."
        return normalized

    start = index - context_chars
    end = index + len(keyword) + context_chars
    prefix = suffix = ""
    if start < 0:
        start = 0
    else:
        prefix = "..."
    if end > len(normalized):
        end = len(normalized)
    else:
        suffix = "..."
    return prefix + normalized[start:end] + suffix


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally with ESCAPE '\\'."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SearchMixin:
    """Full-text keyword search for a Database."""

    def search(self, keyword: str) -> list[SearchResult]:
        """Case-insensitively find the keyword in task and action fields."""
        keyword = keyword.strip()
        if not keyword:
            return []
        escaped = escape_like(keyword)
        rows = self.execute(_SEARCH_QUERY, (escaped,) * 5)
        return [
            SearchResult(
                entity_type=entity_type,
                entity_id=entity_id,
                task_id=task_id,
                field=field,
                snippet=extract_snippet(value, keyword, SNIPPET_CONTEXT),
                status=status,
                created_at=format_local(created_at),
            )
            for entity_type, entity_id, task_id, field, value, status, created_at in rows
        ]