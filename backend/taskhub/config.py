"""TaskHub application configuration.

Loads settings from two YAML files:
  * taskhub.settings.yaml: non-secret configuration
  * taskhub.secrets.yaml:  secrets (never committed)

Either path can be overridden with the TASKHUB_SETTINGS_FILE /
TASKHUB_SECRETS_FILE environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("taskhub.settings.yaml")
SECRETS_FILE  = Path("taskhub.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class EncryptionSecrets(BaseModel):
    # Any length; the cipher derives a 32-byte key from it.
    key: str = "taskhub-development-message-key"


class Secrets(BaseModel):
    jwt:        JWTSecrets        = Field(default_factory=JWTSecrets)
    encryption: EncryptionSecrets = Field(default_factory=EncryptionSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    reload:          bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseSettings(BaseModel):
    path: str = "taskhub.duckdb"


class LoggingSettings(BaseModel):
    level: str = "info"


class MessagingSettings(BaseModel):
    """Message lifecycle policy."""
    restricted_roles:         List[str] = Field(default_factory=lambda: ["admin"])
    max_content_length:       int       = 1000
    unread_cache_ttl_seconds: float     = 5.0
    reaction_types:           List[str] = Field(
        default_factory=lambda: ["like", "love", "haha", "wow", "sad", "angry"]
    )

    @field_validator("max_content_length")
    @classmethod
    def _positive_length(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_content_length must be positive")
        return v


class RealtimeSettings(BaseModel):
    """WebSocket channel settings (0 = no limit)."""
    max_connections_per_user: int   = 0
    typing_timeout_seconds:   float = 4.0


class ClientSettings(BaseModel):
    """Defaults for the reconciliation client package."""
    conversation_cache_ttl_seconds: float = 30.0
    badge_debounce_seconds:         float = 0.5
    reconnect_delay_seconds:        float = 1.0
    reconnect_delay_max_seconds:    float = 5.0
    poll_interval_seconds:          float = 10.0   # 0 disables the polling backstop
    suppression_file:               str   = "~/.taskhub/deleted_conversations.json"


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    database:  DatabaseSettings  = Field(default_factory=DatabaseSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    realtime:  RealtimeSettings  = Field(default_factory=RealtimeSettings)
    client:    ClientSettings    = Field(default_factory=ClientSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_file or Path(os.environ.get("TASKHUB_SETTINGS_FILE", SETTINGS_FILE))
    secrets_path  = secrets_file or Path(os.environ.get("TASKHUB_SECRETS_FILE", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, restricted_roles=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.messaging.restricted_roles,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppSettings) -> None:
    """Replace the process-wide settings (tests, embedding applications)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads from disk."""
    global _config
    _config = None
