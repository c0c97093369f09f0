"""Config Loader - Loads client settings from YAML.

Settings files support ${ENV_VAR} substitution in any string value, so
secrets such as bearer tokens can stay out of the file:

    timeouts:
      connect: 5
      read: 30
    retry: true
    bearer_token: ${API_TOKEN}
    default_headers:
      User-Agent: my-service/1.0
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mocha_api.errors import ConfigurationError
from mocha_api.models import Timeouts

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ClientSettings(BaseModel):
    """Top-level settings file structure."""

    model_config = ConfigDict(extra="forbid")

    timeouts: Timeouts = Field(default_factory=Timeouts, description="Per-attempt timeouts")
    retry: bool = Field(default=False, description="Retry transient failures")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Backoff base in seconds")
    allow_localhost: bool = Field(default=False, description="Permit private-network targets")
    logging: bool = Field(default=False, description="Log requests and responses")
    raise_for_status: bool = Field(default=False, description="Fail on 4xx/5xx responses")
    default_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every request"
    )
    bearer_token: str | None = Field(default=None, description="Token for Authorization: Bearer")


def load_client_settings(config_path: Path) -> ClientSettings:
    """Load client settings from YAML with ${ENV_VAR} substitution.

    An empty file yields the defaults.

    Raises:
        ConfigurationError: If the file is missing, malformed, or references
            an unset environment variable.
    """
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientSettings.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config structure: {e}") from e


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigurationError if a variable is unset."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
