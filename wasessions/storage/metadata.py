"""Metadata store for session instances and chat identifiers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wasessions.storage.db.models import ChatRecord, InstanceRecord

LOGGER = logging.getLogger(__name__)

STATUS_ACTIVE = "ACTIVE"
STATUS_INACTIVE = "INACTIVE"

_UPDATABLE_FIELDS = frozenset({"status", "number", "data", "qr", "title"})


def owns_chat_id(session_id: str, chat_id: str) -> bool:
    if not chat_id.startswith(session_id):
        return False
    rest = chat_id[len(session_id) :]
    return not rest or not rest[0].isalnum()


class MetadataStore:
    """Async repository over the ``instance`` and ``chats`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add_instance(
        self,
        session_id: str,
        *,
        uid: str,
        title: Optional[str] = None,
        status: Optional[str] = None,
        number: Optional[str] = None,
    ) -> InstanceRecord:
        record = InstanceRecord(uid=uid, unique_id=session_id, title=title, status=status, number=number)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def get(self, session_id: str) -> Optional[InstanceRecord]:
        async with self._session_factory() as session:
            stmt = select(InstanceRecord).where(InstanceRecord.unique_id == session_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def update(self, session_id: str, **fields: Any) -> bool:
        """Update columns of the instance row for ``session_id``.

        Returns ``False`` when no row matched.
        """

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown instance fields: {sorted(unknown)}")
        if not fields:
            return False
        async with self._session_factory() as session:
            stmt = update(InstanceRecord).where(InstanceRecord.unique_id == session_id).values(**fields)
            result = await session.execute(stmt)
            await session.commit()
        return bool(result.rowcount)

    async def find_instances(self, uid: str, number: str) -> list[InstanceRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(InstanceRecord)
                .where(InstanceRecord.uid == uid, InstanceRecord.number == number)
                .order_by(InstanceRecord.id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def add_chat(self, uid: str, chat_id: str) -> ChatRecord:
        record = ChatRecord(uid=uid, chat_id=chat_id)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def chats_with_prefix(self, uid: str, prefix: str) -> list[ChatRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(ChatRecord)
                .where(ChatRecord.uid == uid, ChatRecord.chat_id.startswith(prefix, autoescape=True))
                .order_by(ChatRecord.id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def chats_for_session(self, uid: str, session_id: str) -> list[ChatRecord]:
        """Chats whose id is ``session_id`` itself or ``session_id`` followed by a separator.

        ``u1_a-42`` belongs to ``u1_a``; ``u1_ab-42`` does not.
        """

        return [
            chat
            for chat in await self.chats_with_prefix(uid, session_id)
            if owns_chat_id(session_id, chat.chat_id)
        ]

    async def rewrite_chat_ids(self, uid: str, old_session_id: str, new_session_id: str) -> int:
        """Re-point the chat ids of ``old_session_id`` to ``new_session_id``.

        Each row is updated on its own; a failing row is logged and skipped.
        """

        rewritten = 0
        for chat in await self.chats_for_session(uid, old_session_id):
            new_chat_id = new_session_id + chat.chat_id[len(old_session_id) :]
            try:
                async with self._session_factory() as session:
                    await session.execute(
                        update(ChatRecord).where(ChatRecord.id == chat.id).values(chat_id=new_chat_id)
                    )
                    await session.commit()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Chat id rewrite failed chat=%s uid=%s", chat.chat_id, uid)
                continue
            rewritten += 1
            LOGGER.info("Chat id %s updated to %s", chat.chat_id, new_chat_id)
        return rewritten
