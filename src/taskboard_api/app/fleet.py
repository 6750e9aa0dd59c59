"""Client for the fleet-management API (agent roster, names, message push).

All calls go through one httpx.AsyncClient so they never block the event loop,
carry the bearer token, and are bounded by short timeouts. Every call is
best-effort; callers decide whether a failure matters.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from .errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class FleetGateway(Protocol):
    """What the lifecycle engine and notifier need from the fleet."""

    async def push_message(self, agent_id: str, content: str) -> None: ...

    async def get_agent_name(self, agent_id: str) -> str: ...

    async def list_running_agents(self) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


class FleetClient:
    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        push_timeout_s: float = 5.0,
        lookup_timeout_s: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.push_timeout_s = push_timeout_s
        self.lookup_timeout_s = lookup_timeout_s
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=lookup_timeout_s,
            transport=transport,
        )

    async def push_message(self, agent_id: str, content: str) -> None:
        """POST a message into the agent's inbox; raises UpstreamUnavailableError on failure."""
        await self._request(
            "POST",
            f"/agents/{quote(agent_id, safe='')}/messages",
            json={"content": content},
            timeout=self.push_timeout_s,
        )

    async def get_agent_name(self, agent_id: str) -> str:
        """Display name for an agent; falls back to the id on any failure."""
        try:
            payload = await self._request(
                "GET", f"/agents/{quote(agent_id, safe='')}", timeout=self.lookup_timeout_s
            )
        except UpstreamUnavailableError as exc:
            logger.debug("fleet event=name_lookup_failed agent_id=%s reason=%s", agent_id, exc)
            return agent_id
        agent = payload.get("agent") if isinstance(payload, dict) else None
        name = agent.get("name") if isinstance(agent, dict) else None
        if isinstance(name, str) and name.strip():
            return name
        return agent_id

    async def list_running_agents(self) -> list[dict[str, Any]]:
        payload = await self._request("GET", "/agents", timeout=self.lookup_timeout_s)
        agents = payload.get("agents") if isinstance(payload, dict) else None
        if not isinstance(agents, list):
            raise UpstreamUnavailableError("Fleet API returned an unexpected roster payload")
        return [
            agent
            for agent in agents
            if isinstance(agent, dict) and agent.get("status") == "running"
        ]

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, json=json, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                f"Fleet API {method} {path} failed with status {exc.response.status_code}",
                details={"status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"Fleet API {method} {path} failed: {exc.__class__.__name__}"
            ) from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(
                f"Fleet API {method} {path} returned invalid JSON"
            ) from exc
