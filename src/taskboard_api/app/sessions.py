"""Binding of RPC sessions to caller identities.

An RPC caller opens a session once (supplying its agent id) and receives a
token. Each later request presents the token; the binder resolves it to a
CallerContext that is handed explicitly to whatever the request invokes. The
context lives only as long as that request's handling, and concurrent requests
each hold their own value. Bindings are process memory only and vanish on
restart; callers then open a new session.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Literal

from .errors import InvalidArgumentError, InvalidSessionError

logger = logging.getLogger(__name__)

CallerRole = Literal["agent", "human"]


@dataclass(frozen=True)
class CallerContext:
    """Who is performing the current request."""

    caller_id: str
    role: CallerRole

    @property
    def is_agent(self) -> bool:
        return self.role == "agent"


# REST callers are the human reviewer; there is no per-human identity.
HUMAN_CALLER = CallerContext(caller_id="human", role="human")
HUMAN_DISPLAY_NAME = "Human"


class SessionIdentityBinder:
    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}
        self._lock = threading.Lock()

    def open_session(self, agent_id: str | None) -> str:
        """Create a session for agent_id and return its fresh token."""
        agent_id = (agent_id or "").strip()
        if not agent_id:
            raise InvalidArgumentError("agent_id is required to open a session")
        token = uuid.uuid4().hex
        with self._lock:
            self._sessions[token] = agent_id
        logger.info("session event=opened agent_id=%s", agent_id)
        return token

    def resolve(self, token: str) -> CallerContext:
        with self._lock:
            agent_id = self._sessions.get(token)
        if agent_id is None:
            logger.info("session event=rejected reason=unknown_token")
            raise InvalidSessionError("Session not found")
        return CallerContext(caller_id=agent_id, role="agent")

    def close_session(self, token: str) -> None:
        with self._lock:
            agent_id = self._sessions.pop(token, None)
        if agent_id is None:
            raise InvalidSessionError("Session not found")
        logger.info("session event=closed agent_id=%s", agent_id)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
