"""Configuration helpers for the session manager."""

from wasessions.config.settings import SessionSettings, get_settings

__all__ = ["SessionSettings", "get_settings"]
