"""Per-session credential areas on disk."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from wasessions.errors import CredentialStoreError

LOGGER = logging.getLogger(__name__)

AREA_PREFIX = "md_"
AREA_SUFFIX = ".json"
STORE_MARKER = "_store"
CREDS_FILE = "creds.json"


def area_name(session_id: str) -> str:
    return f"{AREA_PREFIX}{session_id}{AREA_SUFFIX}"


def parse_area_name(name: str) -> Optional[str]:
    """Return the session id embedded in a credential area name, or ``None``."""

    if not name.startswith(AREA_PREFIX) or not name.endswith(AREA_SUFFIX) or STORE_MARKER in name:
        return None
    session_id = name[len(AREA_PREFIX) : -len(AREA_SUFFIX)]
    return session_id or None


@dataclass
class CredentialState:
    """Authentication material the protocol client reads and updates."""

    session_id: str
    path: Path
    creds: Dict[str, Any] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered"))

    @property
    def me(self) -> Optional[Dict[str, Any]]:
        me = self.creds.get("me")
        return me if isinstance(me, dict) else None

    def apply(self, update: Dict[str, Any]) -> None:
        self.creds.update(update)


SaveCallback = Callable[[], Awaitable[None]]


class CredentialStore:
    """Opens, persists and removes the credential area of each session."""

    def __init__(self, sessions_dir: Path, *, contacts_dir: Optional[Path] = None) -> None:
        self._sessions_dir = sessions_dir
        self._contacts_dir = contacts_dir

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def area_path(self, session_id: str) -> Path:
        return self._sessions_dir / area_name(session_id)

    async def open(self, session_id: str) -> tuple[CredentialState, SaveCallback]:
        """Create or load the credential area and return its state plus a save callback."""

        path = self.area_path(session_id)
        try:
            creds = await asyncio.to_thread(self._load_creds, path)
        except (OSError, ValueError) as exc:
            raise CredentialStoreError(f"Cannot open credential area {path}") from exc
        state = CredentialState(session_id=session_id, path=path, creds=creds)

        async def _save() -> None:
            await asyncio.to_thread(self._write_creds, path, dict(state.creds))

        return state, _save

    async def remove(self, session_id: str) -> None:
        """Delete all credential material of a session; missing files are ignored."""

        await asyncio.to_thread(self._remove_sync, session_id)

    @staticmethod
    def _load_creds(path: Path) -> Dict[str, Any]:
        path.mkdir(parents=True, exist_ok=True)
        creds_path = path / CREDS_FILE
        if not creds_path.is_file():
            return {}
        raw = json.loads(creds_path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError(f"{creds_path} must contain a JSON object")
        return raw

    @staticmethod
    def _write_creds(path: Path, creds: Dict[str, Any]) -> None:
        path.mkdir(parents=True, exist_ok=True)
        tmp = path / f"{CREDS_FILE}.tmp"
        tmp.write_text(json.dumps(creds, default=str), encoding="utf-8")
        os.replace(tmp, path / CREDS_FILE)

    def _remove_sync(self, session_id: str) -> None:
        area = self.area_path(session_id)
        if area.is_dir():
            shutil.rmtree(area, ignore_errors=True)
        legacy_store = self._sessions_dir / f"{session_id}{STORE_MARKER}.json"
        legacy_store.unlink(missing_ok=True)
        if self._contacts_dir is not None:
            (self._contacts_dir / f"{session_id}.json").unlink(missing_ok=True)
        LOGGER.debug("Removed credential material session=%s", session_id)
