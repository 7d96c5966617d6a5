"""Database utilities backing the metadata store."""

from .base import Base
from .models import ChatRecord, InstanceRecord
from .session import create_engine, create_session_factory, init_models

__all__ = [
    "Base",
    "ChatRecord",
    "InstanceRecord",
    "create_engine",
    "create_session_factory",
    "init_models",
]
