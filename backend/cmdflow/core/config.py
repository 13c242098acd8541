# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
cmdflow Configuration - Single source of truth.
YAML is king. Env vars ONLY for secrets and the config path itself.
"""

import os
import logging
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Literal

from pydantic import BaseModel, Field, field_validator

from cmdflow.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/cmdflow.yaml"


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable application configuration.
    All values from YAML. No hidden state.
    """

    # -- Run tracking --
    run_history_limit: int = 500
    workflow_log_limit: int = 1000

    # -- Workflow engine --
    fan_out: str = "parallel"
    default_delay_seconds: float = 1.0

    # -- External calls --
    http_timeout: float = 30.0
    mcp_timeout: float = 300.0
    ai_timeout: float = 120.0
    ai_api_url: str = "https://api.openai.com/v1/chat/completions"
    ai_model: str = "gpt-4o-mini"
    ai_temperature: float = 0.7
    mcp_servers: Dict[str, str] = field(default_factory=dict)

    # -- Paths --
    workflows_path: str = "workflows"

    # -- API --
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    def get_ai_api_key(self) -> Optional[str]:
        """Get model API key from environment"""
        return get_ai_api_key()


# =============================================================================
# YAML SCHEMA
# =============================================================================

class _RunsSection(BaseModel):
    history_limit: int = Field(default=500, gt=0)


class _EngineSection(BaseModel):
    fan_out: Literal["parallel", "sequential"] = "parallel"
    default_delay_seconds: float = Field(default=1.0, gt=0)
    log_limit: int = Field(default=1000, gt=0)


class _TimeoutsSection(BaseModel):
    http: float = Field(default=30.0, gt=0)
    mcp: float = Field(default=300.0, gt=0)
    ai: float = Field(default=120.0, gt=0)


class _AISection(BaseModel):
    api_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class _APISection(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, lt=65536)


class _LoggingSection(BaseModel):
    level: str = "INFO"
    format: str = "json"

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ["json", "text"]:
            raise ValueError("Format must be 'json' or 'text'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        if v.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()


class ConfigFile(BaseModel):
    """Schema of configs/cmdflow.yaml"""
    runs: _RunsSection = Field(default_factory=_RunsSection)
    engine: _EngineSection = Field(default_factory=_EngineSection)
    timeouts: _TimeoutsSection = Field(default_factory=_TimeoutsSection)
    ai: _AISection = Field(default_factory=_AISection)
    mcp_servers: Dict[str, str] = Field(default_factory=dict)
    workflows_path: str = "workflows"
    api: _APISection = Field(default_factory=_APISection)
    logging: _LoggingSection = Field(default_factory=_LoggingSection)

    @field_validator("workflows_path")
    @classmethod
    def validate_path(cls, v):
        if any(char in v for char in [';', '&', '|', '$', '`', '\n', '\r']):
            raise ValueError("Invalid characters in path")
        return v


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_ai_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("CMDFLOW_AI_API_KEY") or os.getenv("OPENAI_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Raises:
        ConfigurationError: If the file exists but does not match the schema
    """
    if not Path(path).exists():
        logger.info(f"Config not found at {path}, using defaults")
        return Config()

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    try:
        y = ConfigFile(**raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", config_file=str(path))

    return Config(
        run_history_limit=y.runs.history_limit,
        workflow_log_limit=y.engine.log_limit,
        fan_out=y.engine.fan_out,
        default_delay_seconds=y.engine.default_delay_seconds,
        http_timeout=y.timeouts.http,
        mcp_timeout=y.timeouts.mcp,
        ai_timeout=y.timeouts.ai,
        ai_api_url=y.ai.api_url,
        ai_model=y.ai.model,
        ai_temperature=y.ai.temperature,
        mcp_servers=dict(y.mcp_servers),
        workflows_path=y.workflows_path,
        api_host=y.api.host,
        api_port=y.api.port,
        log_level=os.getenv("LOG_LEVEL", y.logging.level),
        log_format=y.logging.format,
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("CMDFLOW_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
