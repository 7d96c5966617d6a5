"""In-memory registry of live sessions, retry counters and reconnect handles."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Dict, Iterator, Optional

if TYPE_CHECKING:
    from wasessions.session.machine import Session


class SessionRegistry:
    """Tracks the live session object per session id.

    Retry counters are kept apart from session objects so they survive a
    session being replaced by its own reconnect.
    """

    def __init__(self, *, max_retries: int = 5) -> None:
        self._max_retries = max_retries
        self._sessions: Dict[str, Session] = {}
        self._retries: Dict[str, int] = {}
        self._reconnects: Dict[str, asyncio.Task[None]] = {}
        self._lock = threading.RLock()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def put(self, session_id: str, session: Session) -> Optional[Session]:
        """Store ``session`` and return the object it replaced, if any."""

        with self._lock:
            previous = self._sessions.get(session_id)
            self._sessions[session_id] = session
            return previous

    def remove(self, session_id: str) -> Optional[Session]:
        """Drop the session and its retry counter; returns the removed session."""

        with self._lock:
            self._retries.pop(session_id, None)
            return self._sessions.pop(session_id, None)

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())

    # Retry policy
    def retries(self, session_id: str) -> int:
        with self._lock:
            return self._retries.get(session_id, 0)

    def should_reconnect(self, session_id: str) -> bool:
        """Consume one reconnect attempt; ``False`` once the ceiling is reached."""

        with self._lock:
            attempts = self._retries.get(session_id, 0)
            if attempts < self._max_retries:
                self._retries[session_id] = attempts + 1
                return True
            return False

    def reset_retries(self, session_id: str) -> None:
        with self._lock:
            self._retries.pop(session_id, None)

    # Pending reconnects
    def set_reconnect(self, session_id: str, task: asyncio.Task[None]) -> None:
        """Track the pending reconnect of a session, cancelling an older one.

        An older task that is the caller itself is replaced but left running.
        """

        with self._lock:
            previous = self._reconnects.get(session_id)
            self._reconnects[session_id] = task
        if previous is None or previous is task or previous.done():
            return
        if previous is not asyncio.current_task():
            previous.cancel()

    def reconnect_pending(self, session_id: str) -> bool:
        with self._lock:
            task = self._reconnects.get(session_id)
        return task is not None and not task.done()

    def pop_reconnect(self, session_id: str) -> Optional[asyncio.Task[None]]:
        with self._lock:
            return self._reconnects.pop(session_id, None)

    def clear_reconnect(self, session_id: str, task: asyncio.Task[None]) -> None:
        """Forget ``task`` if it is still the tracked reconnect of the session."""

        with self._lock:
            if self._reconnects.get(session_id) is task:
                del self._reconnects[session_id]
