"""Identifier helpers for session ids and remote JIDs."""

from __future__ import annotations

import re
from typing import Optional

USER_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"
BROADCAST_JID = "status@broadcast"
OWNER_SEPARATOR = "_"

_PHONE_PREFIX = re.compile(r"^(\d+)(?=:|@)")


def owner_id(session_id: str) -> str:
    """Return the owner portion of a session id (text before the first ``_``)."""

    head, _, _ = session_id.partition(OWNER_SEPARATOR)
    return head


def extract_phone_number(jid: Optional[str]) -> Optional[str]:
    """Return the leading digits of a device JID such as ``5551234567:1@s.whatsapp.net``."""

    if not jid:
        return None
    match = _PHONE_PREFIX.match(jid)
    return match.group(1) if match else None


def format_phone(phone: str) -> str:
    if phone.endswith(USER_SUFFIX):
        return phone
    digits = re.sub(r"\D", "", phone)
    return digits + USER_SUFFIX


def format_group(group: str) -> str:
    if group.endswith(GROUP_SUFFIX):
        return group
    cleaned = re.sub(r"[^\d-]", "", group)
    return cleaned + GROUP_SUFFIX
