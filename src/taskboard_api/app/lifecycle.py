"""Task lifecycle: creation, status transitions, results, reviews and deletion.

Status moves through todo -> in_progress -> review -> done, driven by two kinds
of caller:
- agents (RPC) may set in_progress or review on tasks they are assigned to, or
  submit a result, which always moves the task to review;
- the human reviewer (REST) approves (done) or rejects with feedback
  (in_progress) through review_decision.

Every successful transition writes exactly one system comment. The current
status is not checked before a transition, so e.g. an agent may reopen a done
task. Notifications are handed to the dispatcher after the write and never
awaited here.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .errors import ForbiddenError, InvalidArgumentError, task_not_found
from .fleet import FleetGateway
from .models import (
    TASK_STATUSES,
    Comment,
    ReviewAction,
    Task,
    TaskDetail,
    TaskResult,
    TaskStatus,
    TaskSummary,
)
from .notifications import NotificationDispatcher
from .results import ResultAggregator, last_result
from .sessions import HUMAN_CALLER, HUMAN_DISPLAY_NAME, CallerContext
from .storage import TaskStore, dedupe_assignees

logger = logging.getLogger(__name__)

# Statuses an assigned agent may request directly.
AGENT_SETTABLE_STATUSES: frozenset[str] = frozenset({"in_progress", "review"})

_STATUS_NARRATION: dict[str, str] = {
    "in_progress": "started working on this task",
    "review": "submitted this task for review",
}


class LifecycleEngine:
    def __init__(
        self,
        *,
        store: TaskStore,
        fleet: FleetGateway,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.store = store
        self.fleet = fleet
        self.dispatcher = dispatcher
        self.results = ResultAggregator(store)

    async def create_task(
        self, title: str, description: str | None, assignee_ids: Sequence[str]
    ) -> Task:
        title = title.strip()
        assignees = dedupe_assignees([agent_id.strip() for agent_id in assignee_ids])
        assignees = [agent_id for agent_id in assignees if agent_id]
        if not title or not assignees:
            raise InvalidArgumentError("title and at least one assigneeId are required")

        task = self.store.create_task(title, description or None, assignees)
        logger.info(
            "task_lifecycle event=created task_id=%s assignees=%d", task.id, len(assignees)
        )
        self.dispatcher.notify_assignment(task.id, assignees, task.title, task.description)
        return task

    def list_tasks(self) -> list[TaskSummary]:
        summaries: list[TaskSummary] = []
        for task in self.store.list_tasks():
            summaries.append(
                TaskSummary(
                    **task.model_dump(),
                    assignees=self.store.list_assignees(task.id),
                    last_result=last_result(self.store.list_results(task.id)),
                )
            )
        return summaries

    def list_tasks_for(self, ctx: CallerContext) -> list[Task]:
        return self.store.list_tasks_for_agent(ctx.caller_id)

    def get_task_detail(self, task_id: str) -> TaskDetail:
        task = self._require_task(task_id)
        return TaskDetail(
            **task.model_dump(),
            assignees=self.store.list_assignees(task_id),
            comments=self.store.list_comments(task_id),
            results=self.store.list_results(task_id),
            latest_results=self.results.latest_per_agent(task_id),
        )

    async def set_status(self, ctx: CallerContext, task_id: str, status: str) -> Task:
        """Agent-requested transition to in_progress or review."""
        if status not in TASK_STATUSES:
            raise InvalidArgumentError(f"Invalid status: {status!r}")
        self._require_task(task_id)
        if not ctx.is_agent:
            raise ForbiddenError("Human transitions go through review decisions")
        if status not in AGENT_SETTABLE_STATUSES:
            raise ForbiddenError(f"Agents cannot set status {status!r}")
        self._require_assignee(ctx, task_id)

        # Resolve the name before writing so the transition and its comment land together.
        agent_name = await self.fleet.get_agent_name(ctx.caller_id)
        self._recheck_after_lookup(ctx, task_id)
        updated = self._write_status(task_id, status)
        self.store.add_comment(
            task_id,
            author_id=ctx.caller_id,
            author_type="agent",
            author_name=agent_name,
            content=f"[System] {agent_name} {_STATUS_NARRATION[status]}.",
        )
        logger.info(
            "task_lifecycle event=status_changed task_id=%s status=%s caller=%s",
            task_id,
            status,
            ctx.caller_id,
        )
        return updated

    async def submit_result(
        self,
        ctx: CallerContext,
        task_id: str,
        content: str,
        file_path: str | None = None,
    ) -> TaskResult:
        """Record a result and force the task into review, whatever its status was."""
        self._require_task(task_id)
        if not ctx.is_agent:
            raise ForbiddenError("Only assigned agents can submit results")
        self._require_assignee(ctx, task_id)

        agent_name = await self.fleet.get_agent_name(ctx.caller_id)
        self._recheck_after_lookup(ctx, task_id)
        file_path = file_path or None
        result = self.store.add_result(
            task_id, agent_id=ctx.caller_id, content=content, file_path=file_path
        )
        self._write_status(task_id, "review")
        file_note = f" (file: {file_path})" if file_path else ""
        self.store.add_comment(
            task_id,
            author_id=ctx.caller_id,
            author_type="agent",
            author_name=agent_name,
            content=f"[System] {agent_name} submitted a result{file_note}. Task is now in review.",
        )
        logger.info(
            "task_lifecycle event=result_submitted task_id=%s result_id=%s caller=%s",
            task_id,
            result.id,
            ctx.caller_id,
        )
        return result

    async def review_decision(
        self, task_id: str, action: ReviewAction, feedback: str | None = None
    ) -> TaskDetail:
        """Human approval (-> done) or rejection with feedback (-> in_progress)."""
        task = self._require_task(task_id)
        if action == "approve":
            self._write_status(task_id, "done")
            self._add_human_comment(task_id, "[System] Task approved and marked as done.")
        elif action == "reject":
            feedback = (feedback or "").strip()
            if not feedback:
                raise InvalidArgumentError("feedback is required when rejecting")
            self._write_status(task_id, "in_progress")
            self._add_human_comment(task_id, f"[Feedback] {feedback}")
            self.dispatcher.notify_rejection(
                task_id, self.store.list_assignees(task_id), task.title, feedback
            )
        else:
            raise InvalidArgumentError('action must be "approve" or "reject"')

        logger.info("task_lifecycle event=reviewed task_id=%s action=%s", task_id, action)
        return self.get_task_detail(task_id)

    def add_comment(self, task_id: str, content: str) -> Comment:
        """Free-form comment from the human reviewer."""
        self._require_task(task_id)
        if not content.strip():
            raise InvalidArgumentError("content is required")
        return self._add_human_comment(task_id, content)

    def delete_task(self, task_id: str) -> None:
        if not self.store.delete_task(task_id):
            raise task_not_found(task_id)
        logger.info("task_lifecycle event=deleted task_id=%s", task_id)

    def _require_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise task_not_found(task_id)
        return task

    def _require_assignee(self, ctx: CallerContext, task_id: str) -> None:
        if ctx.caller_id not in self.store.list_assignees(task_id):
            raise ForbiddenError(
                "You are not assigned to this task",
                details={"task_id": task_id, "agent_id": ctx.caller_id},
            )

    def _recheck_after_lookup(self, ctx: CallerContext, task_id: str) -> None:
        # The name lookup suspends; the task may have been deleted or reassigned meanwhile.
        self._require_task(task_id)
        self._require_assignee(ctx, task_id)

    def _write_status(self, task_id: str, status: TaskStatus) -> Task:
        updated = self.store.update_task_status(task_id, status)
        if updated is None:
            raise task_not_found(task_id)
        return updated

    def _add_human_comment(self, task_id: str, content: str) -> Comment:
        return self.store.add_comment(
            task_id,
            author_id=HUMAN_CALLER.caller_id,
            author_type=HUMAN_CALLER.role,
            author_name=HUMAN_DISPLAY_NAME,
            content=content,
        )
