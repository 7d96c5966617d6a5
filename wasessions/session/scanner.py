"""Recreates sessions for every credential area found on disk at startup."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from wasessions.storage.credentials import parse_area_name

LOGGER = logging.getLogger(__name__)

CreateSession = Callable[[str, Optional[str], bool], Awaitable[str]]


class BootstrapScanner:
    def __init__(self, sessions_dir: Path, create: CreateSession, *, default_title: str = "Chrome") -> None:
        self._sessions_dir = sessions_dir
        self._create = create
        self._default_title = default_title

    async def scan(self) -> list[str]:
        """Call ``create`` for each credential area; returns the ids that started."""

        try:
            names = await asyncio.to_thread(self._list_areas)
        except OSError:
            LOGGER.exception("Error reading sessions directory %s", self._sessions_dir)
            return []

        started: list[str] = []
        for name in names:
            session_id = parse_area_name(name)
            if session_id is None:
                continue
            try:
                await self._create(session_id, self._default_title, False)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Error creating session %s during bootstrap", session_id)
                continue
            started.append(session_id)
        LOGGER.info("Bootstrap started %s of %s stored sessions", len(started), len(names))
        return started

    def _list_areas(self) -> list[str]:
        if not self._sessions_dir.exists():
            return []
        names: list[str] = []
        for entry in sorted(self._sessions_dir.iterdir()):
            try:
                if entry.is_dir():
                    names.append(entry.name)
            except OSError:
                LOGGER.exception("Error inspecting %s", entry)
        return names
