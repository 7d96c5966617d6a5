"""Folds sessions that resolve to the same account number into the newest one."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from wasessions.jid import owner_id as owner_of
from wasessions.storage.conversations import ConversationArchive
from wasessions.storage.metadata import MetadataStore

LOGGER = logging.getLogger(__name__)

DeleteSession = Callable[[str], Awaitable[None]]


class DuplicateMerger:
    def __init__(
        self,
        *,
        store: MetadataStore,
        conversations: ConversationArchive,
        delete: DeleteSession,
    ) -> None:
        self._store = store
        self._conversations = conversations
        self._delete = delete
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def owner_lock(self, owner: str) -> AsyncIterator[None]:
        """Serialise merges of one owner; the lock is dropped once nobody holds or awaits it."""

        lock = self._locks.setdefault(owner, asyncio.Lock())
        self._lock_users[owner] = self._lock_users.get(owner, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[owner] - 1
            if remaining:
                self._lock_users[owner] = remaining
            else:
                del self._lock_users[owner]
                del self._locks[owner]

    async def merge(
        self,
        session_id: str,
        number: str,
        profile: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Delete older sessions of the same owner and number and re-key their data.

        Returns the ids that were merged into ``session_id``. Every step is
        attempted for every duplicate even when an earlier one fails. A merged
        row loses its number, so later merges no longer match it.
        """

        owner = owner_of(session_id)
        async with self.owner_lock(owner):
            try:
                instances = await self._store.find_instances(owner, number)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Duplicate lookup failed owner=%s number=%s", owner, number)
                return []

            merged: list[str] = []
            for instance in instances:
                old_id = instance.unique_id
                if not old_id or old_id == session_id:
                    continue
                LOGGER.info("Merging session %s into %s (number=%s)", old_id, session_id, number)
                try:
                    await self._delete(old_id)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error deleting duplicate session %s", old_id)
                try:
                    await self._conversations.rename(owner, number, old_id, session_id)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error renaming conversations of %s", old_id)
                try:
                    await self._store.rewrite_chat_ids(owner, old_id, session_id)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error rewriting chat ids of %s", old_id)
                try:
                    await self._store.update(old_id, number=None)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error clearing number of merged session %s", old_id)
                merged.append(old_id)
            return merged
