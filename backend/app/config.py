"""Image Drop application configuration.

Loads settings from a single YAML file:
  * imgdrop.settings.yaml  — non-secret configuration

The file location can be overridden with the ``IMGDROP_SETTINGS``
environment variable.  The listening port honours ``PORT`` when set.
Relative storage paths are resolved against the directory that holds
the settings file.
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

SETTINGS_FILE = Path("imgdrop.settings.yaml")
SETTINGS_ENV  = "IMGDROP_SETTINGS"
PORT_ENV      = "PORT"

# Media types the upload pipeline has a stored-file extension for
STORABLE_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve(path: str, base_dir: Path) -> str:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class StorageSettings(BaseModel):
    """Where stored images and the upload-date document live."""
    upload_dir:    str = "./uploads"
    metadata_path: str = "./upload_dates.json"


class UploadSettings(BaseModel):
    max_bytes:          int       = 15 * 1024 * 1024
    allowed_mime_types: List[str] = Field(
        default_factory=lambda: ["image/png", "image/jpeg", "image/webp"]
    )
    png_compress_level: int       = 9
    lossy_quality:      int       = 20

    @field_validator("allowed_mime_types")
    @classmethod
    def _check_mime_types(cls, value: List[str]) -> List[str]:
        value = [v.lower() for v in value]
        unknown = sorted(set(value) - set(STORABLE_MIME_TYPES))
        if unknown:
            raise ValueError(f"cannot store media types: {', '.join(unknown)}")
        return value

    @field_validator("png_compress_level")
    @classmethod
    def _check_compress_level(cls, value: int) -> int:
        if not 0 <= value <= 9:
            raise ValueError("png_compress_level must be between 0 and 9")
        return value

    @field_validator("lossy_quality")
    @classmethod
    def _check_quality(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("lossy_quality must be between 1 and 100")
        return value


class RetentionSettings(BaseModel):
    enabled:          bool = True
    max_age_days:     int  = 30
    interval_seconds: int  = 60 * 60


class RateLimitSettings(BaseModel):
    enabled:        bool = True
    window_seconds: int  = 15 * 60
    max_requests:   int  = 25
    message:        str  = "Too many uploads for this IP. Please try again in 15 minutes."


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:     ServerSettings    = Field(default_factory=ServerSettings)
    storage:    StorageSettings   = Field(default_factory=StorageSettings)
    uploads:    UploadSettings    = Field(default_factory=UploadSettings)
    retention:  RetentionSettings = Field(default_factory=RetentionSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging:    LoggingSettings   = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings from YAML, apply env overrides and resolve paths."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV, SETTINGS_FILE))
    settings_path = Path(settings_path)

    data = _load_yaml(settings_path)
    config = AppConfig(**data)

    port = os.environ.get(PORT_ENV)
    if port:
        config.server.port = int(port)

    base_dir = settings_path.resolve().parent
    config.storage.upload_dir = _resolve(config.storage.upload_dir, base_dir)
    config.storage.metadata_path = _resolve(config.storage.metadata_path, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, upload_dir=%s, retention.enabled=%s)",
        config.server.host,
        config.server.port,
        config.storage.upload_dir,
        config.retention.enabled,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (for testing)."""
    global _config
    _config = None
