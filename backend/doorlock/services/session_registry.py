"""Registry of live device sessions in this process."""
import logging
from typing import Dict, List, Set, TYPE_CHECKING

if TYPE_CHECKING:
    from .device_session import DeviceSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks authenticated device sessions by session token.

    Each session owns its own shadow and tasks; the registry only answers
    "is this lock connected here" for presence sweeps and health checks.
    """

    def __init__(self):
        self._sessions: Dict[str, Set["DeviceSession"]] = {}

    def register(self, session: "DeviceSession"):
        """Record a newly authenticated session."""
        sessions = self._sessions.setdefault(session.token, set())
        if sessions:
            logger.warning(
                f"Token {session.token[:4]}... already has {len(sessions)} live session(s); "
                "multiple devices per lock are not supported"
            )
        sessions.add(session)
        logger.info(f"Device session registered. Total connections: {self.connection_count}")

    def unregister(self, session: "DeviceSession"):
        """Forget a closed session."""
        sessions = self._sessions.get(session.token)
        if sessions is None:
            return
        sessions.discard(session)
        if not sessions:
            del self._sessions[session.token]
        logger.info(f"Device session unregistered. Total connections: {self.connection_count}")

    def is_online(self, token: str) -> bool:
        return bool(self._sessions.get(token))

    def tokens(self) -> List[str]:
        return list(self._sessions)

    @property
    def connection_count(self) -> int:
        """Return the number of live sessions."""
        return sum(len(s) for s in self._sessions.values())


# Global instance
session_registry = SessionRegistry()
