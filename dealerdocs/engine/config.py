"""
DealerDocs Configuration — Load and validate dealerdocs.yaml.

Usage:
    from dealerdocs.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from dealerdocs.engine.errors import DealerDocsConfigError

CONFIG_FILENAME = "dealerdocs.yaml"
TOKEN_ENV_VAR = "DEALERDOCS_API_TOKEN"


# ---------------------------------------------------------------------------
# Pydantic models for dealerdocs.yaml
# ---------------------------------------------------------------------------

class ApiConfig(BaseModel):
    base_url: str = "http://localhost:8000/api"
    timeout: float = 30.0
    token: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class UploadsConfig(BaseModel):
    max_size_bytes: int = 10 * 1024 * 1024
    max_files: int = 10
    error_dismiss_ms: int = 3000
    chunk_size: int = 64 * 1024

    @field_validator("max_size_bytes", "max_files", "chunk_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class PreviewConfig(BaseModel):
    pdf_release_grace_ms: int = 1000


class SharingConfig(BaseModel):
    public_base_url: str = "http://localhost:3000"
    otp_default_hours: int = 24
    otp_max_hours: int = 168

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class DownloadsConfig(BaseModel):
    directory: str = "downloads"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".dealerdocs/logs"
    activity_log: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{v}'")
        return v


class DealerDocsConfig(BaseModel):
    """Root model for dealerdocs.yaml."""
    environment: str = "dev"

    api: ApiConfig = ApiConfig()
    uploads: UploadsConfig = UploadsConfig()
    preview: PreviewConfig = PreviewConfig()
    sharing: SharingConfig = SharingConfig()
    downloads: DownloadsConfig = DownloadsConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v

    @property
    def api_token(self) -> Optional[str]:
        """Bearer token from config, falling back to the environment."""
        return self.api.token or os.environ.get(TOKEN_ENV_VAR)


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[DealerDocsConfig] = None


def _find_config_file() -> Optional[Path]:
    """Walk up from CWD looking for dealerdocs.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> DealerDocsConfig:
    """
    Load and validate dealerdocs.yaml.

    Args:
        config_path: Explicit path to the file. If None, auto-discovers.

    Returns:
        Validated DealerDocsConfig instance (defaults when no file exists).

    Raises:
        DealerDocsConfigError if the file is not valid YAML or fails validation.
    """
    global _config

    path = Path(config_path) if config_path else _find_config_file()
    if path is None or not path.exists():
        _config = DealerDocsConfig()
        return _config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise DealerDocsConfigError(f"Could not parse {path}: {e}", object_ref=str(path))

    if not isinstance(raw, dict):
        raise DealerDocsConfigError(f"{path} must contain a mapping", object_ref=str(path))

    # Allow everything to be nested under a top-level "dealerdocs:" key
    data = raw.get("dealerdocs", raw)

    try:
        _config = DealerDocsConfig(**data)
    except ValidationError as e:
        raise DealerDocsConfigError(
            f"Invalid configuration in {path}: {e.error_count()} error(s)",
            object_ref=str(path),
            errors=e.errors(include_url=False),
        )
    return _config


def get_config() -> DealerDocsConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
