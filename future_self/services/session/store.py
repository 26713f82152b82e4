"""Session storage."""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from future_self.services.session.models import Session


class SessionStore(ABC):
    """Abstract session storage keyed by session id."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        """Get a session, or None if unknown."""
        pass

    @abstractmethod
    def set(self, session: Session) -> None:
        """Insert or replace a session."""
        pass

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns True if it existed."""
        pass

    @abstractmethod
    def list(self) -> List[Session]:
        """List all sessions."""
        pass

    def count(self) -> int:
        """Number of stored sessions."""
        return len(self.list())


class InMemorySessionStore(SessionStore):
    """Process-local session store.

    Sessions live only as long as the process. Fine for one call per
    deployment; in production, use Redis or similar.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def set(self, session: Session) -> None:
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def list(self) -> List[Session]:
        return list(self._sessions.values())

    def count(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        self._sessions.clear()
