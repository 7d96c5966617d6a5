"""Exceptions raised by the session manager."""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base error for session lifecycle operations."""


class SessionCreateError(SessionError):
    """Raised when a session cannot open its credentials or connect."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(f"Failed to create session {session_id}: {message}")
        self.session_id = session_id


class CredentialStoreError(SessionError):
    """Raised when a credential area cannot be opened or written."""


class ClientActionError(SessionError):
    """Raised when a caller-invoked protocol action fails."""
