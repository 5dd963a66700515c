"""Chat service configuration.

Loads settings from a single YAML file:
  * chat.settings.yaml: non-secret configuration

The path can be overridden with the ``CHAT_SETTINGS_FILE`` environment
variable. A missing file is not an error: every section has defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chat.settings.yaml")
SETTINGS_ENV_VAR = "CHAT_SETTINGS_FILE"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    debug:           bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class MessagingSettings(BaseModel):
    db_path:           str = "messages.duckdb"
    default_page_size: int = Field(default=20, ge=1)
    max_page_size:     int = Field(default=50, ge=1)
    max_text_length:   int = Field(default=5000, ge=1)


class MediaSettings(BaseModel):
    upload_dir:      str = "uploads"
    db_path:         str = "media_metadata.duckdb"
    # Prefix used to build durable media URLs; empty means "relative to the API".
    public_base_url: str = ""
    max_size_bytes:  int = 10 * 1024 * 1024


class IdentitySettings(BaseModel):
    header_name: str = "X-User-Id"
    query_param: str = "userId"


class LoggingSettings(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ClientSettings(BaseModel):
    """Defaults for the Python client library (``app.client``)."""
    base_url:        str   = "http://localhost:8000"
    page_size:       int   = Field(default=20, ge=1)
    request_timeout: float = 10.0


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    media:     MediaSettings     = Field(default_factory=MediaSettings)
    identity:  IdentitySettings  = Field(default_factory=IdentitySettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    client:    ClientSettings    = Field(default_factory=ClientSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load *AppSettings* from YAML, falling back to defaults."""
    if path is None:
        path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_data = _load_yaml(path)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, messages_db=%s, media_dir=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.messaging.db_path,
        app_settings.media.upload_dir,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: AppSettings) -> None:
    """Install *settings* as the process-wide configuration (tests, embedding)."""
    global _config
    _config = settings


def reset_config() -> None:
    """Forget the cached settings so the next ``get_config()`` reloads them."""
    global _config
    _config = None
