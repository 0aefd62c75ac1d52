"""
Typed Settings Schema (Pydantic)
================================

Provides typed, validated configuration for the ChefFlow kitchen bridge.
Invalid settings fail closed at startup.

Usage:
    from config.settings_schema import load_validated_settings

    settings = load_validated_settings()
    timeout = settings.engine.startup_timeout_seconds
    policy = settings.engine.restart_policy
"""
from __future__ import annotations

import logging
import os
import shlex
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config.settings_loader import load_settings
from core.exceptions import SettingsValidationError

logger = logging.getLogger(__name__)


# ============================================================================
# Schema Definitions
# ============================================================================

class SystemConfig(BaseModel):
    """System-level configuration."""
    name: str = Field(default="ChefFlow", description="System name")
    version: str = Field(default="2.0.0", description="System version")


class EngineConfig(BaseModel):
    """Queue engine process configuration."""
    command: List[str] = Field(
        default_factory=lambda: ["java", "-cp", "backend-java", "Main"],
        description="Engine argv",
    )
    cwd: Optional[str] = None
    ready_sentinel: str = "READY"
    startup_timeout_seconds: float = Field(default=10.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0)
    protocol: Literal["v1", "v2"] = "v1"
    max_line_bytes: int = Field(default=1024 * 1024, ge=64)
    restart_policy: Literal["none", "restart"] = "none"

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("engine.command must not be empty")
        return value


class RestartConfig(BaseModel):
    """Backoff applied when restart_policy is 'restart'."""
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_attempts_per_hour: int = Field(default=5, ge=1)


class StoreConfig(BaseModel):
    """Durable order store configuration."""
    path: str = "state/orders.sqlite"
    timeout_seconds: float = Field(default=30.0, gt=0)


class JournalConfig(BaseModel):
    """Write-ahead dispatch journal configuration."""
    enabled: bool = True
    path: str = "state/dispatch_journal.jsonl"
    fsync: bool = True
    compact_every: int = Field(default=500, ge=1)


class WebConfig(BaseModel):
    """HTTP request surface configuration."""
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    history_limit: int = Field(default=100, ge=1, le=10000)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class Settings(BaseModel):
    """Complete settings schema."""
    model_config = ConfigDict(extra="allow")

    system: SystemConfig = Field(default_factory=SystemConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    restart: RestartConfig = Field(default_factory=RestartConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ============================================================================
# Environment overrides
# ============================================================================

_ENV_OVERRIDES = {
    "CHEFFLOW_ENGINE_CMD": ("engine", "command"),
    "CHEFFLOW_DB_PATH": ("store", "path"),
    "CHEFFLOW_PORT": ("web", "port"),
    "CHEFFLOW_LOG_LEVEL": ("logging", "level"),
}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in raw.items()}
    for env_key, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_key)
        if value:
            merged.setdefault(section, {})
            merged[section][key] = value
    return merged


# ============================================================================
# Validation Functions
# ============================================================================

def validate_settings(raw: Dict[str, Any]) -> Settings:
    """
    Validate a raw settings mapping.

    Raises:
        SettingsValidationError: If settings are invalid
    """
    try:
        return Settings(**raw)
    except ValidationError as e:
        logger.error(f"Settings validation failed: {e}")
        raise SettingsValidationError(
            "Settings validation failed",
            context={"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]},
            cause=e,
        ) from e


def load_validated_settings(force_reload: bool = False) -> Settings:
    """
    Load base.yaml, apply environment overrides, and validate.

    Returns:
        Validated Settings object

    Raises:
        SettingsValidationError: If settings are invalid
    """
    raw = load_settings(force_reload=force_reload)
    return validate_settings(_apply_env_overrides(raw))
