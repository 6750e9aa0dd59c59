"""Read-only projections over the append-only result history."""

from __future__ import annotations

from collections.abc import Iterable

from .errors import task_not_found
from .models import TaskResult
from .storage import TaskStore


def latest_per_agent(results: Iterable[TaskResult]) -> list[TaskResult]:
    """Keep each agent's newest result, ordered by that result's creation time.

    Input is expected oldest-first (as storage returns it); on equal timestamps the
    row seen later wins.
    """
    latest: dict[str, TaskResult] = {}
    for result in results:
        current = latest.get(result.agent_id)
        if current is None or result.created_at >= current.created_at:
            latest[result.agent_id] = result
    return sorted(latest.values(), key=lambda item: item.created_at)


def last_result(results: Iterable[TaskResult]) -> TaskResult | None:
    newest: TaskResult | None = None
    for result in results:
        if newest is None or result.created_at >= newest.created_at:
            newest = result
    return newest


class ResultAggregator:
    def __init__(self, store: TaskStore) -> None:
        self.store = store

    def latest_per_agent(self, task_id: str) -> list[TaskResult]:
        if self.store.get_task(task_id) is None:
            raise task_not_found(task_id)
        return latest_per_agent(self.store.list_results(task_id))
