"""Pydantic models shared across storage, lifecycle, REST and RPC layers.

Terms used in this file:
- Task: a unit of work on the board, always in one of four statuses.
- Comment: append-only narration attached to a task (human, agent or system text).
- TaskResult: one submission by an agent; several per agent are kept.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# The only statuses a task can ever be persisted with.
TaskStatus = Literal["todo", "in_progress", "review", "done"]
TASK_STATUSES: tuple[str, ...] = ("todo", "in_progress", "review", "done")

AuthorType = Literal["agent", "human"]
ReviewAction = Literal["approve", "reject"]


class Task(BaseModel):
    """Canonical task record shape returned by storage."""

    id: str
    title: str
    description: str | None = None
    status: TaskStatus = "todo"
    created_at: datetime
    updated_at: datetime


class Comment(BaseModel):
    id: str
    task_id: str
    author_id: str
    author_type: AuthorType
    author_name: str
    content: str
    created_at: datetime


class TaskResult(BaseModel):
    """One submitted work product; the full history is retained."""

    id: str
    task_id: str
    agent_id: str
    content: str
    file_path: str | None = None
    created_at: datetime


class TaskSummary(Task):
    """Board listing row: the task plus who is on it and the newest submission."""

    assignees: list[str] = Field(default_factory=list)
    last_result: TaskResult | None = None


class TaskDetail(Task):
    assignees: list[str] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    # Full append-only history, oldest first.
    results: list[TaskResult] = Field(default_factory=list)
    # One entry per agent: that agent's most recent submission.
    latest_results: list[TaskResult] = Field(default_factory=list)


NonEmptyStr = Annotated[str, Field(min_length=1)]


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    description: str | None = None
    # Wire name is camelCase; at least one assignee is required.
    assignee_ids: list[NonEmptyStr] = Field(alias="assigneeIds", min_length=1)


class ReviewDecisionRequest(BaseModel):
    """Request body for PATCH /tasks/{task_id}/status."""

    action: ReviewAction
    feedback: str | None = None


class CreateCommentRequest(BaseModel):
    content: str = Field(min_length=1)


class TaskListResponse(BaseModel):
    tasks: list[TaskSummary] = Field(default_factory=list)


class TaskResponse(BaseModel):
    task: Task


class TaskDetailResponse(BaseModel):
    task: TaskDetail


class CommentResponse(BaseModel):
    comment: Comment


class DeleteTaskResponse(BaseModel):
    ok: bool = True


class AgentListResponse(BaseModel):
    agents: list[dict[str, Any]] = Field(default_factory=list)
