"""Best-effort push notifications to assigned agents.

Each notify_* call spawns a detached asyncio task and returns immediately; the
request that triggered it never awaits delivery. Inside the task every recipient
gets its own push with its own timeout, run in parallel. Failures are logged and
dropped: no retry, no acknowledgement tracking. The task record is the source of
truth whether or not a push lands.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .fleet import FleetGateway

logger = logging.getLogger(__name__)


def build_assignment_message(task_id: str, title: str, description: str | None) -> str:
    lines = [
        "[New task assigned to you]",
        f"Title: {title}",
    ]
    if description:
        lines.append(f"Description: {description}")
    lines.extend(
        [
            f"taskId: {task_id}",
            "",
            f'Use get_task("{task_id}") to see details, then '
            f'update_task_status("{task_id}", "in_progress") when you start, and '
            f'post_task_result("{task_id}", yourResult) when done.',
        ]
    )
    return "\n".join(lines)


def build_rejection_message(task_id: str, title: str, feedback: str) -> str:
    return "\n".join(
        [
            "[Task returned for revision]",
            f"Title: {title}",
            f"taskId: {task_id}",
            "",
            f"Feedback: {feedback}",
            "",
            f'Please revise and call post_task_result("{task_id}", yourResult) again when done.',
        ]
    )


class NotificationDispatcher:
    def __init__(self, fleet: FleetGateway, *, push_timeout_s: float = 5.0) -> None:
        self.fleet = fleet
        self.push_timeout_s = push_timeout_s
        # Strong references so in-flight fan-outs are not garbage collected.
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def notify_assignment(
        self,
        task_id: str,
        assignee_ids: Sequence[str],
        title: str,
        description: str | None = None,
    ) -> asyncio.Task[None]:
        content = build_assignment_message(task_id, title, description)
        return self._spawn("assignment", task_id, assignee_ids, content)

    def notify_rejection(
        self,
        task_id: str,
        assignee_ids: Sequence[str],
        title: str,
        feedback: str,
    ) -> asyncio.Task[None]:
        content = build_rejection_message(task_id, title, feedback)
        return self._spawn("rejection", task_id, assignee_ids, content)

    async def drain(self) -> None:
        """Wait for every fan-out spawned so far (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(
        self, kind: str, task_id: str, assignee_ids: Sequence[str], content: str
    ) -> asyncio.Task[None]:
        recipients = list(assignee_ids)
        task = asyncio.get_running_loop().create_task(
            self._fan_out(kind, task_id, recipients, content),
            name=f"notify-{kind}-{task_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _fan_out(
        self, kind: str, task_id: str, recipients: list[str], content: str
    ) -> None:
        outcomes = await asyncio.gather(
            *(self._push_one(kind, task_id, agent_id, content) for agent_id in recipients)
        )
        delivered = sum(1 for ok in outcomes if ok)
        logger.info(
            "notify event=fan_out_done kind=%s task_id=%s delivered=%d failed=%d",
            kind,
            task_id,
            delivered,
            len(outcomes) - delivered,
        )

    async def _push_one(self, kind: str, task_id: str, agent_id: str, content: str) -> bool:
        try:
            await asyncio.wait_for(
                self.fleet.push_message(agent_id, content), timeout=self.push_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(
                "notify event=push_failed kind=%s task_id=%s agent_id=%s reason=timeout",
                kind,
                task_id,
                agent_id,
            )
            return False
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notify event=push_failed kind=%s task_id=%s agent_id=%s reason=%s",
                kind,
                task_id,
                agent_id,
                exc,
            )
            return False
        return True
