from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from taskboard_api.app.errors import UpstreamUnavailableError
from taskboard_api.app.fleet import FleetClient

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> FleetClient:
    return FleetClient(
        base_url="http://fleet.test/internal/",
        token="secret-token",
        push_timeout_s=1.0,
        lookup_timeout_s=1.0,
        transport=httpx.MockTransport(handler),
    )


def _run(client: FleetClient, call):
    async def scenario():
        try:
            return await call(client)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def test_push_message_posts_content_with_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    _run(_client(handler), lambda fleet: fleet.push_message("agent a", "hello"))

    [request] = seen
    assert request.method == "POST"
    assert request.url.raw_path == b"/internal/agents/agent%20a/messages"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert json.loads(request.content) == {"content": "hello"}


def test_push_message_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        _run(_client(handler), lambda fleet: fleet.push_message("agent-a", "hello"))
    assert excinfo.value.details == {"status_code": 503}


def test_agent_name_comes_from_fleet_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/internal/agents/agent-a"
        return httpx.Response(200, json={"agent": {"id": "agent-a", "name": "Alice"}})

    assert _run(_client(handler), lambda fleet: fleet.get_agent_name("agent-a")) == "Alice"


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500),
        lambda request: httpx.Response(200, json={"agent": {"name": "  "}}),
        lambda request: httpx.Response(200, content=b"not json"),
    ],
    ids=["server-error", "blank-name", "invalid-json"],
)
def test_agent_name_falls_back_to_id(handler: Handler) -> None:
    assert _run(_client(handler), lambda fleet: fleet.get_agent_name("agent-a")) == "agent-a"


def test_agent_name_falls_back_when_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _run(_client(handler), lambda fleet: fleet.get_agent_name("agent-a")) == "agent-a"


def test_running_agents_are_filtered() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "agents": [
                    {"id": "agent-a", "name": "Alice", "status": "running"},
                    {"id": "agent-b", "name": "Bob", "status": "stopped"},
                    {"id": "agent-c", "name": "Cy", "status": "running"},
                ]
            },
        )

    agents = _run(_client(handler), lambda fleet: fleet.list_running_agents())

    assert [agent["id"] for agent in agents] == ["agent-a", "agent-c"]


def test_roster_failures_raise() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    def malformed(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"agents": "nope"})

    for handler in (unreachable, malformed):
        with pytest.raises(UpstreamUnavailableError):
            _run(_client(handler), lambda fleet: fleet.list_running_agents())
