"""In-memory store backend for local development and tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from uuid import uuid4

from .models import AuthorType, Comment, Task, TaskResult, TaskStatus
from .storage import dedupe_assignees


def _utc_now() -> datetime:
    return datetime.now(UTC)


class InMemoryTaskStore:
    """Dict/list implementation of the TaskStore contract; returns copies, never live rows."""

    def __init__(self, *, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        self._assignees: dict[str, list[str]] = {}
        self._comments: list[Comment] = []
        self._results: list[TaskResult] = []

    def migrate(self) -> None:
        return None

    def create_task(
        self, title: str, description: str | None, assignee_ids: Sequence[str]
    ) -> Task:
        now = self._clock()
        task = Task(
            id=str(uuid4()),
            title=title,
            description=description,
            status="todo",
            created_at=now,
            updated_at=now,
        )
        self._tasks[task.id] = task
        self._assignees[task.id] = dedupe_assignees(assignee_ids)
        return task.model_copy()

    def list_tasks(self) -> list[Task]:
        ordered = sorted(self._tasks.values(), key=lambda task: task.created_at, reverse=True)
        return [task.model_copy() for task in ordered]

    def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return task.model_copy() if task else None

    def update_task_status(self, task_id: str, status: TaskStatus) -> Task | None:
        current = self._tasks.get(task_id)
        if current is None:
            return None
        updated = current.model_copy(
            update={"status": status, "updated_at": max(current.updated_at, self._clock())}
        )
        self._tasks[task_id] = updated
        return updated.model_copy()

    def delete_task(self, task_id: str) -> bool:
        self._assignees.pop(task_id, None)
        self._comments = [item for item in self._comments if item.task_id != task_id]
        self._results = [item for item in self._results if item.task_id != task_id]
        return self._tasks.pop(task_id, None) is not None

    def list_assignees(self, task_id: str) -> list[str]:
        return sorted(self._assignees.get(task_id, []))

    def list_tasks_for_agent(self, agent_id: str) -> list[Task]:
        return [
            task for task in self.list_tasks() if agent_id in self._assignees.get(task.id, [])
        ]

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
            id=str(uuid4()),
            task_id=task_id,
            author_id=author_id,
            author_type=author_type,
            author_name=author_name,
            content=content,
            created_at=self._clock(),
        )
        self._comments.append(comment)
        return comment.model_copy()

    def list_comments(self, task_id: str) -> list[Comment]:
        rows = [item for item in self._comments if item.task_id == task_id]
        return [item.model_copy() for item in sorted(rows, key=lambda item: item.created_at)]

    def add_result(
        self, task_id: str, *, agent_id: str, content: str, file_path: str | None
    ) -> TaskResult:
        result = TaskResult(
            id=str(uuid4()),
            task_id=task_id,
            agent_id=agent_id,
            content=content,
            file_path=file_path,
            created_at=self._clock(),
        )
        self._results.append(result)
        return result.model_copy()

    def list_results(self, task_id: str) -> list[TaskResult]:
        rows = [item for item in self._results if item.task_id == task_id]
        return [item.model_copy() for item in sorted(rows, key=lambda item: item.created_at)]
