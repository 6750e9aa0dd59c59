"""Task board storage: the store protocol and its PostgreSQL backend.

Terms:
- Migration: creating tables/indexes before normal reads/writes.
- Cascade delete: removing a task's assignees, comments and results, then the task,
  in one transaction so no partial state is ever visible.
- Row factory: returns query rows as dict-like objects instead of tuples.

Storage holds no business rules; who may change what is decided in lifecycle.py.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from .models import AuthorType, Comment, Task, TaskResult, TaskStatus


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def create_task(
        self, title: str, description: str | None, assignee_ids: Sequence[str]
    ) -> Task: ...

    def list_tasks(self) -> list[Task]: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def update_task_status(self, task_id: str, status: TaskStatus) -> Task | None: ...

    def delete_task(self, task_id: str) -> bool: ...

    def list_assignees(self, task_id: str) -> list[str]: ...

    def list_tasks_for_agent(self, agent_id: str) -> list[Task]: ...

    def add_comment(
        self,
        task_id: str,
        *,
        author_id: str,
        author_type: AuthorType,
        author_name: str,
        content: str,
    ) -> Comment: ...

    def list_comments(self, task_id: str) -> list[Comment]: ...

    def add_result(
        self, task_id: str, *, agent_id: str, content: str, file_path: str | None
    ) -> TaskResult: ...

    def list_results(self, task_id: str) -> list[TaskResult]: ...


def dedupe_assignees(assignee_ids: Sequence[str]) -> list[str]:
    """Drop repeated agent ids, keeping first-seen order."""
    seen: set[str] = set()
    ordered: list[str] = []
    for agent_id in assignee_ids:
        if agent_id in seen:
            continue
        seen.add(agent_id)
        ordered.append(agent_id)
    return ordered


class PostgresTaskStore:
    """Thread-safe PostgreSQL-backed store for tasks and their dependent rows."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()
        self.migrate()

    def migrate(self) -> None:
        """Create the four board tables and their lookup indexes if missing."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'todo'
                        CHECK (status IN ('todo', 'in_progress', 'review', 'done')),
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_assignees (
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    agent_id TEXT NOT NULL,
                    PRIMARY KEY (task_id, agent_id)
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_comments (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    author_id TEXT NOT NULL,
                    author_type TEXT NOT NULL CHECK (author_type IN ('agent', 'human')),
                    author_name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    seq BIGSERIAL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_results (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id),
                    agent_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    file_path TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    seq BIGSERIAL
                )
                """)
            # Tables created before the insertion sequence existed.
            conn.execute("ALTER TABLE task_comments ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
            conn.execute("ALTER TABLE task_results ADD COLUMN IF NOT EXISTS seq BIGSERIAL")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_assignees_agent_id
                ON task_assignees(agent_id)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_comments_task_id
                ON task_comments(task_id, created_at)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_task_results_task_id
                ON task_results(task_id, agent_id, created_at)
                """)
            conn.commit()

    def create_task(
        self, title: str, description: str | None, assignee_ids: Sequence[str]
    ) -> Task:
        """Insert the task and its assignees in one transaction."""
        task_id = str(uuid.uuid4())
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks (id, title, description, status, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (task_id, title, description, "todo", now, now),
            )
            for agent_id in dedupe_assignees(assignee_ids):
                conn.execute(
                    "INSERT INTO task_assignees (task_id, agent_id) VALUES (%s, %s)",
                    (task_id, agent_id),
                )
            conn.commit()
        return Task(
            id=task_id,
            title=title,
            description=description,
            status="todo",
            created_at=now,
            updated_at=now,
        )

    def list_tasks(self) -> list[Task]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC").fetchall()
        return [self._row_to_task(row) for row in rows]

    def get_task(self, task_id: str) -> Task | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = %s", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task_status(self, task_id: str, status: TaskStatus) -> Task | None:
        """Set status; updated_at never moves backwards even if the clock does."""
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                """
                UPDATE tasks
                SET status = %s,
                    updated_at = GREATEST(updated_at, %s)
                WHERE id = %s
                RETURNING *
                """,
                (status, now, task_id),
            ).fetchone()
            conn.commit()
        if row is None:
            return None
        return self._row_to_task(row)

    def delete_task(self, task_id: str) -> bool:
        """Cascade delete: assignees, comments, results, then the task itself."""
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM task_assignees WHERE task_id = %s", (task_id,))
            conn.execute("DELETE FROM task_comments WHERE task_id = %s", (task_id,))
            conn.execute("DELETE FROM task_results WHERE task_id = %s", (task_id,))
            cursor = conn.execute("DELETE FROM tasks WHERE id = %s", (task_id,))
            deleted = cursor.rowcount > 0
            conn.commit()
        return deleted

    def list_assignees(self, task_id: str) -> list[str]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT agent_id FROM task_assignees WHERE task_id = %s ORDER BY agent_id",
                (task_id,),
            ).fetchall()
        return [row["agent_id"] for row in rows]

    def list_tasks_for_agent(self, agent_id: str) -> list[Task]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT t.*
                FROM tasks t
                JOIN task_assignees ta ON t.id = ta.task_id
                WHERE ta.agent_id = %s
                ORDER BY t.created_at DESC
                """,
                (agent_id,),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def add_comment(
        self,
        task_id: str,
        *,
        author_id: str,
        author_type: AuthorType,
        author_name: str,
        content: str,
    ) -> Comment:
        comment = Comment(
            id=str(uuid.uuid4()),
            task_id=task_id,
            author_id=author_id,
            author_type=author_type,
            author_name=author_name,
            content=content,
            created_at=datetime.now(tz=UTC),
        )
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO task_comments (
                    id, task_id, author_id, author_type, author_name, content, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    comment.id,
                    comment.task_id,
                    comment.author_id,
                    comment.author_type,
                    comment.author_name,
                    comment.content,
                    comment.created_at,
                ),
            )
            conn.commit()
        return comment

    def list_comments(self, task_id: str) -> list[Comment]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_comments WHERE task_id = %s ORDER BY created_at ASC, seq ASC",
                (task_id,),
            ).fetchall()
        return [Comment.model_validate(dict(row)) for row in rows]

    def add_result(
        self, task_id: str, *, agent_id: str, content: str, file_path: str | None
    ) -> TaskResult:
        result = TaskResult(
            id=str(uuid.uuid4()),
            task_id=task_id,
            agent_id=agent_id,
            content=content,
            file_path=file_path,
            created_at=datetime.now(tz=UTC),
        )
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO task_results (id, task_id, agent_id, content, file_path, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    result.id,
                    result.task_id,
                    result.agent_id,
                    result.content,
                    result.file_path,
                    result.created_at,
                ),
            )
            conn.commit()
        return result

    def list_results(self, task_id: str) -> list[TaskResult]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_results WHERE task_id = %s ORDER BY created_at ASC, seq ASC",
                (task_id,),
            ).fetchall()
        return [TaskResult.model_validate(dict(row)) for row in rows]

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        """Parse datetime value from database driver output."""
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )
