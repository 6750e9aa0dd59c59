from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from taskboard_api.app.errors import UpstreamUnavailableError
from taskboard_api.app.settings import Settings


class FakeFleet:
    """Fleet double that records pushes instead of sending them."""

    def __init__(
        self,
        *,
        names: dict[str, str] | None = None,
        roster: list[dict[str, Any]] | None = None,
        failing_agents: set[str] | None = None,
        roster_down: bool = False,
    ) -> None:
        self.names = names or {}
        self.roster = roster or []
        self.failing_agents = failing_agents or set()
        self.roster_down = roster_down
        self.pushes: list[tuple[str, str]] = []
        self.closed = False

    async def push_message(self, agent_id: str, content: str) -> None:
        self.pushes.append((agent_id, content))
        if agent_id in self.failing_agents:
            raise UpstreamUnavailableError(f"push to {agent_id} failed")

    async def get_agent_name(self, agent_id: str) -> str:
        return self.names.get(agent_id, agent_id)

    async def list_running_agents(self) -> list[dict[str, Any]]:
        if self.roster_down:
            raise UpstreamUnavailableError("Fleet API GET /agents failed: ConnectError")
        return [agent for agent in self.roster if agent.get("status") == "running"]

    async def aclose(self) -> None:
        self.closed = True

    def recipients(self) -> list[str]:
        return [agent_id for agent_id, _ in self.pushes]


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {"store_backend": "memory", "fleet_api_url": "http://fleet.test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def open_session(client: TestClient, agent_id: str) -> str:
    response = client.post(
        f"/mcp?agent_id={agent_id}",
        json={
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {"protocolVersion": "2025-03-26", "capabilities": {}},
        },
    )
    assert response.status_code == 200
    return response.headers["mcp-session-id"]
