"""
Session Memory Module

Per-session conversation history, kept in memory:

- A session is created the first time its id is seen (read or write)
- Each session keeps at most max_messages turns (default 20)
- When full, the OLDEST turn is dropped first (strict FIFO)
- Nothing survives a restart

Any string is a valid session id, including "".

Concurrency: the session map is guarded by one lock used only for
get-or-insert, and every session has its own lock for its turns. Two
different sessions never wait on each other's lock.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from config.settings import get_settings


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One message of a conversation."""
    role: Role
    content: str

    def to_message(self) -> Dict[str, str]:
        """Chat-completions message dict."""
        return {"role": self.role.value, "content": self.content}


class _Session:
    def __init__(self):
        self.turns: List[Turn] = []
        self.lock = threading.Lock()
        # Set by clear(); a writer holding a stale reference must look again
        self.closed = False


class SessionMemory:
    """
    Bounded, per-session message log.

    Usage:
        memory = SessionMemory()
        memory.append("abc", "user", "Hi!")
        memory.history("abc")   # [Turn(role=Role.USER, content='Hi!')]
    """

    def __init__(self, max_messages: Optional[int] = None):
        """
        Args:
            max_messages: Turns kept per session (defaults to settings)
        """
        self.max_messages = (
            max_messages if max_messages is not None else get_settings().memory.max_messages
        )
        if self.max_messages <= 0:
            raise ValueError(f"max_messages must be positive, got {self.max_messages}")

        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, session_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = _Session()
                self._sessions[session_id] = session
            return session

    def _write(self, session_id: str, turns: List[Turn]):
        while True:
            session = self._get_or_create(session_id)
            with session.lock:
                if session.closed:
                    continue
                session.turns.extend(turns)
                overflow = len(session.turns) - self.max_messages
                if overflow > 0:
                    del session.turns[:overflow]
                return

    def history(self, session_id: str) -> List[Turn]:
        """
        Get the conversation history of a session, oldest first.

        Creates an empty session if the id is new. The returned list is a
        snapshot; changing it does not change the session.
        """
        session = self._get_or_create(session_id)
        with session.lock:
            return list(session.turns)

    def append(self, session_id: str, role: Union[Role, str], content: str):
        """
        Add a message to a session, evicting the oldest turns past the limit.

        Raises:
            ValueError: role is not "user" or "assistant"
        """
        self._write(session_id, [Turn(role=Role(role), content=content)])

    def append_exchange(self, session_id: str, user_content: str, assistant_content: str):
        """Add a user turn and the assistant's reply as one update."""
        self._write(session_id, [
            Turn(role=Role.USER, content=user_content),
            Turn(role=Role.ASSISTANT, content=assistant_content),
        ])

    def clear(self, session_id: str) -> bool:
        """Forget a session. Returns False if it did not exist."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        with session.lock:
            session.closed = True
        return True

    def session_count(self) -> int:
        """Number of sessions currently held."""
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
