"""On-disk conversation records keyed by ``<number>_<session_id>.json``."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class ConversationArchive:
    """Conversation files grouped per owner under ``<root>/inbox/<owner_id>/``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def owner_dir(self, owner_id: str) -> Path:
        return self._root / "inbox" / owner_id

    @staticmethod
    def record_name(number: str, session_id: str) -> str:
        return f"{number}_{session_id}.json"

    async def rename(self, owner_id: str, number: str, old_session_id: str, new_session_id: str) -> list[Path]:
        """Move the record of ``old_session_id`` to ``new_session_id``; returns the new paths."""

        return await asyncio.to_thread(self._rename_sync, owner_id, number, old_session_id, new_session_id)

    def _rename_sync(self, owner_id: str, number: str, old_session_id: str, new_session_id: str) -> list[Path]:
        directory = self.owner_dir(owner_id)
        try:
            entries = sorted(directory.iterdir())
        except FileNotFoundError:
            LOGGER.debug("No conversation directory for owner=%s", owner_id)
            return []
        except OSError:
            LOGGER.exception("Error reading conversation directory %s", directory)
            return []

        old_name = self.record_name(number, old_session_id)
        new_name = self.record_name(number, new_session_id)
        renamed: list[Path] = []
        for entry in entries:
            if entry.name != old_name:
                continue
            target = directory / new_name
            if target.exists():
                LOGGER.warning("Conversation record %s already exists; keeping %s", target, entry)
                continue
            try:
                entry.rename(target)
            except OSError:
                LOGGER.exception("Error renaming conversation record %s", entry)
                continue
            LOGGER.info("Renamed %s to %s", entry.name, new_name)
            renamed.append(target)
        return renamed
