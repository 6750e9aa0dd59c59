from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from taskboard_api.app.errors import NotFoundError
from taskboard_api.app.memory import InMemoryTaskStore
from taskboard_api.app.models import TaskResult
from taskboard_api.app.results import ResultAggregator, last_result, latest_per_agent

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def _result(result_id: str, agent_id: str, minutes: int) -> TaskResult:
    return TaskResult(
        id=result_id,
        task_id="task-1",
        agent_id=agent_id,
        content=f"result {result_id}",
        created_at=T0 + timedelta(minutes=minutes),
    )


class StepClock:
    """Deterministic clock: each call advances by one minute."""

    def __init__(self) -> None:
        self.current = T0

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def test_latest_per_agent_drops_superseded_results() -> None:
    r1 = _result("r1", "agent-a", 1)
    r2 = _result("r2", "agent-a", 3)
    r3 = _result("r3", "agent-b", 2)

    latest = latest_per_agent([r1, r3, r2])

    assert [item.id for item in latest] == ["r3", "r2"]


def test_latest_per_agent_empty_history() -> None:
    assert latest_per_agent([]) == []
    assert last_result([]) is None


def test_last_result_is_newest_overall() -> None:
    results = [
        _result("r1", "agent-a", 1),
        _result("r2", "agent-b", 5),
        _result("r3", "agent-a", 2),
    ]
    assert last_result(results).id == "r2"


def test_aggregator_reads_store_without_mutating_history() -> None:
    store = InMemoryTaskStore(clock=StepClock())
    aggregator = ResultAggregator(store)
    task = store.create_task("Summarise", None, ["agent-a", "agent-b"])
    store.add_result(task.id, agent_id="agent-a", content="v1", file_path=None)
    store.add_result(task.id, agent_id="agent-b", content="b1", file_path=None)
    store.add_result(task.id, agent_id="agent-a", content="v2", file_path="/shared/v2.md")

    latest = aggregator.latest_per_agent(task.id)

    assert [(item.agent_id, item.content) for item in latest] == [
        ("agent-b", "b1"),
        ("agent-a", "v2"),
    ]
    assert [item.content for item in store.list_results(task.id)] == ["v1", "b1", "v2"]


def test_aggregator_unknown_task() -> None:
    with pytest.raises(NotFoundError):
        ResultAggregator(InMemoryTaskStore()).latest_per_agent("missing")
