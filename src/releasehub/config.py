"""
Server configuration.

Settings come from a YAML file (`releasehub.yaml`), then environment
variables, then command-line overrides, each layer replacing the previous one.
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

import platformdirs
import yaml

from releasehub.constants import (
    API_TOKEN_ENV_VAR,
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_CACHE_MAX_BYTES,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PRE_FETCH,
    DEFAULT_RELEASES_TTL,
    GITHUB_TOKEN_ENV_VAR,
    LOG_LEVEL_ENV_VAR,
    REFRESH_SECRET_ENV_VAR,
)
from releasehub.exceptions import ConfigFileError, ConfigValidationError
from releasehub.log_utils import logger
from releasehub.utils import parse_size

ENV_OVERRIDES = {
    GITHUB_TOKEN_ENV_VAR: "GITHUB_TOKEN",
    API_TOKEN_ENV_VAR: "API_TOKEN",
    REFRESH_SECRET_ENV_VAR: "REFRESH_SECRET",
    LOG_LEVEL_ENV_VAR: "LOG_LEVEL",
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def get_config_dir() -> str:
    return platformdirs.user_config_dir(APP_NAME)


def get_config_file() -> str:
    return os.path.join(get_config_dir(), CONFIG_FILE_NAME)


def get_default_cache_dir() -> str:
    return platformdirs.user_cache_dir(APP_NAME)


@dataclass
class ServerConfig:
    """Validated server settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backend: str = "github"
    repository: Optional[str] = None
    github_token: Optional[str] = None
    releases_dir: Optional[str] = None
    cache_dir: str = field(default_factory=get_default_cache_dir)
    cache_max_bytes: int = DEFAULT_CACHE_MAX_BYTES
    cache_max_age: float = DEFAULT_CACHE_MAX_AGE
    releases_ttl: float = DEFAULT_RELEASES_TTL
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    pre_fetch: bool = DEFAULT_PRE_FETCH
    refresh_secret: Optional[str] = None
    api_token: Optional[str] = None
    public_url: Optional[str] = None
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ServerConfig":
        """
        Build a config from a mapping of upper-case (or any-case) keys.

        Unknown keys are ignored with a warning. None values keep the default.

        Raises:
            ConfigValidationError: If a value has the wrong type or range.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for raw_key, value in data.items():
            key = str(raw_key).lower()
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {raw_key}")
                continue
            if value is None:
                continue
            values[key] = _coerce(key, value)

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.backend not in ("github", "filesystem"):
            raise ConfigValidationError(
                f"Unknown backend '{self.backend}'",
                key="BACKEND",
                details="expected 'github' or 'filesystem'",
            )
        if self.backend == "github" and self.repository and "/" not in self.repository:
            raise ConfigValidationError(
                "REPOSITORY must look like 'owner/name'",
                key="REPOSITORY",
                details=self.repository,
            )
        if not 0 < self.port < 65536:
            raise ConfigValidationError(
                "PORT must be between 1 and 65535", key="PORT", details=str(self.port)
            )
        for key in ("cache_max_age", "releases_ttl", "fetch_timeout"):
            if getattr(self, key) < 0:
                raise ConfigValidationError(
                    f"{key.upper()} must not be negative", key=key.upper()
                )
        if self.public_url:
            self.public_url = self.public_url.rstrip("/")

    def to_dict(self) -> Dict[str, Any]:
        """Settings keyed like the YAML file, with secrets masked."""
        secrets = {"github_token", "refresh_secret", "api_token"}
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in secrets and value:
                value = "***"
            result[f.name.upper()] = value
        return result


def _coerce(key: str, value: Any) -> Any:
    try:
        if key == "port":
            return int(value)
        if key == "cache_max_bytes":
            return parse_size(value)
        if key in ("cache_max_age", "releases_ttl", "fetch_timeout"):
            return float(value)
        if key == "pre_fetch":
            return _to_bool(value)
        if key == "backend":
            return str(value).strip().lower()
        if key == "log_level":
            return str(value).strip().upper()
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(
            f"Invalid value for {key.upper()}", key=key.upper(), details=str(e)
        ) from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def read_config_file(path: str) -> Dict[str, Any]:
    """
    Read a YAML configuration file.

    Returns:
        dict: Parsed settings (empty for an empty file).

    Raises:
        ConfigFileError: If the file cannot be read or is not a YAML mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigFileError(f"Could not read config file {path}", details=str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Could not parse config file {path}", details=str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(
            f"Config file {path} must contain a mapping",
            details=f"got {type(data).__name__}",
        )
    return data


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Load the server configuration.

    If `path` is given the file must exist. Otherwise the platformdirs config
    location is used when a file exists there, and defaults apply when it does not.

    Parameters:
        path (Optional[str]): Explicit config file path.
        overrides (Optional[Mapping[str, Any]]): Highest-priority settings (command-line flags); None values are skipped.
        environ (Optional[Mapping[str, str]]): Environment to read overrides from (defaults to os.environ).

    Raises:
        ConfigFileError: If the file cannot be read or parsed.
        ConfigValidationError: If a setting is invalid.
    """
    data: Dict[str, Any] = {}
    if path:
        if not os.path.exists(path):
            raise ConfigFileError(f"Config file not found: {path}")
        data.update(read_config_file(path))
        logger.debug(f"Loaded configuration from {path}")
    else:
        default_path = get_config_file()
        if os.path.exists(default_path):
            data.update(read_config_file(default_path))
            logger.debug(f"Loaded configuration from {default_path}")

    data = {str(k).upper(): v for k, v in data.items()}

    env = os.environ if environ is None else environ
    for env_var, key in ENV_OVERRIDES.items():
        value = env.get(env_var)
        if value:
            data[key] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            data[str(key).upper()] = value

    return ServerConfig.from_mapping(data)
