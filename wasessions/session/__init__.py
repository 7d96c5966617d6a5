from .machine import Session, SessionOptions
from .manager import SESSION_INITIATED, SessionManager, format_group, format_phone, replace_with_random
from .merge import DuplicateMerger
from .registry import SessionRegistry
from .scanner import BootstrapScanner
from .state import SessionState, SessionTracker

__all__ = [
    "BootstrapScanner",
    "DuplicateMerger",
    "SESSION_INITIATED",
    "Session",
    "SessionManager",
    "SessionOptions",
    "SessionRegistry",
    "SessionState",
    "SessionTracker",
    "format_group",
    "format_phone",
    "replace_with_random",
]
