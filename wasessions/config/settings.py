"""Session manager configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyHttpUrl, Field, NonNegativeFloat, PositiveFloat, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/wasessions/sessions.yaml"),
    Path("/etc/wasessions/sessions.yml"),
    Path("./config/sessions.yaml"),
    Path("./config/sessions.yml"),
)


class SessionSettings(BaseSettings):
    """Validated settings for the session lifecycle manager."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="WA_SESSIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persisted layout
    sessions_dir: Path = Field(
        default=Path("./sessions"),
        description="Directory holding one credential area per session id.",
    )
    conversations_dir: Path = Field(
        default=Path("./conversations"),
        description="Root of the per-owner conversation record directories.",
    )
    contacts_dir: Path = Field(
        default=Path("./contacts"),
        description="Directory of per-session contact exports removed on delete.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./var/data/sessions.db",
        description="SQLAlchemy async URL of the session metadata store.",
    )

    # Lifecycle policy
    max_retries: PositiveInt = Field(
        default=5,
        description="Reconnect attempts allowed before a session is deleted.",
    )
    reconnect_delay_seconds: NonNegativeFloat = Field(
        default=5.0,
        description="Delay before reconnecting after an ordinary close.",
    )
    restart_delay_seconds: NonNegativeFloat = Field(
        default=0.0,
        description="Delay before reconnecting when the remote requires a restart.",
    )
    qr_timeout_seconds: PositiveFloat = Field(
        default=300.0,
        description="Window in which a QR challenge must be paired before the session is abandoned.",
    )
    send_delay_seconds: NonNegativeFloat = Field(
        default=1.0,
        description="Pause applied before every outbound message.",
    )

    # Protocol client options
    client_factory: str = Field(
        default="wasessions.network.dummy:DummyClient",
        description="Import path (``module:attribute``) of the protocol client factory.",
    )
    default_title: str = Field(
        default="Chrome",
        description="Browser label presented to the remote service.",
    )
    sync_full_history: bool = Field(
        default=False,
        description="Ask the remote service for the full message history on pairing.",
    )
    connect_timeout_seconds: PositiveInt = Field(
        default=60,
        description="Protocol client connect timeout.",
    )
    keep_alive_interval_seconds: PositiveInt = Field(
        default=10,
        description="Protocol client keep-alive interval.",
    )

    # Message sink
    sink_webhook_url: AnyHttpUrl | None = Field(
        default=None,
        description="Endpoint receiving inbound events as JSON; events are only logged when unset.",
    )
    sink_webhook_token: str | None = Field(
        default=None,
        description="Bearer token attached to webhook deliveries.",
        repr=False,
    )
    sink_webhook_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Timeout for a single webhook delivery.",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[SessionSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[SessionSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = SessionSettings._resolve_candidate_paths()

        for path in candidates:
            data = SessionSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("WA_SESSIONS_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read sessions config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid sessions config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Sessions config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> SessionSettings:
    """Return memoized session manager settings."""

    settings = SessionSettings()
    # Ensure path fields are absolute for downstream use
    settings.sessions_dir = settings.sessions_dir.expanduser().resolve()
    settings.conversations_dir = settings.conversations_dir.expanduser().resolve()
    settings.contacts_dir = settings.contacts_dir.expanduser().resolve()
    return settings
