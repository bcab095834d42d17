"""Session registry.

Owns every live session. A session's handler set, channel and elicitation
coordinator are stored together in one ``Session`` so that they appear and
disappear in a single dict operation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from uuid import uuid4

import anyio

from atxp_demo.channel import SessionChannel
from atxp_demo.elicitation import DEFAULT_ELICITATION_TIMEOUT, ElicitationCoordinator
from atxp_demo.server import LowLevelServer
from atxp_demo.session import SessionInfo

logger = logging.getLogger(__name__)


@dataclass
class Session:
    session_id: str
    info: SessionInfo
    server: LowLevelServer
    channel: SessionChannel
    coordinator: ElicitationCoordinator
    last_active: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_active = time.monotonic()


class SessionRegistry:
    def __init__(self, elicitation_timeout: float = DEFAULT_ELICITATION_TIMEOUT) -> None:
        self._elicitation_timeout = elicitation_timeout
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def resolve(self, session_id: str | None) -> Session | None:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def create(self, info: SessionInfo, server: LowLevelServer) -> Session:
        """Register a new session for a validated initialize handshake.

        The session is live as soon as this returns; closing its channel
        cancels pending elicitations, then removes it.
        """
        session_id = uuid4().hex
        channel = SessionChannel(session_id)
        coordinator = ElicitationCoordinator(channel, timeout=self._elicitation_timeout)
        session = Session(
            session_id=session_id,
            info=info,
            server=server,
            channel=channel,
            coordinator=coordinator,
        )
        channel.on_close(coordinator.cancel_all)
        channel.on_close(lambda: self.destroy(session_id))
        self._sessions[session_id] = session
        logger.info("Session %s created for client %s", session_id, info.client_info.name)
        return session

    def destroy(self, session_id: str) -> None:
        """Remove a session and close its channel. Idempotent."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        logger.info("Session %s destroyed", session_id)
        session.channel.close()

    def expire_idle(self, idle_timeout: float, now: float | None = None) -> list[str]:
        """Close sessions with no call in flight that have been quiet for ``idle_timeout`` seconds.

        Returns the ids of the expired sessions.
        """
        now = time.monotonic() if now is None else now
        expired = [
            session.session_id
            for session in self._sessions.values()
            if session.channel.idle and now - session.last_active >= idle_timeout
        ]
        for session_id in expired:
            logger.info("Session %s expired after %ss idle", session_id, idle_timeout)
            self.destroy(session_id)
        return expired

    async def run_expiry(self, idle_timeout: float) -> None:
        """Expire idle sessions until cancelled."""
        interval = max(idle_timeout / 2, 0.01)
        while True:
            await anyio.sleep(interval)
            self.expire_idle(idle_timeout)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.destroy(session_id)
