"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.jmapbridge/config.yaml). Dotted keys such as
'retry.max_attempts' map to nested YAML sections and to environment
variables named JMAPBRIDGE_RETRY_MAX_ATTEMPTS.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from jmapbridge.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".jmapbridge"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "JMAPBRIDGE_"

DEFAULT_BASE_URL = "https://api.fastmail.com/jmap"
DEFAULT_USER_AGENT = "jmapbridge/0.1"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for the request execution engine."""
    max_concurrency: int = 2
    max_attempts: int = 5
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    jitter_ratio: float = 0.1
    http_timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False so real environment variables win
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    _loaded = True
    logger.info("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets loaded configuration so the next load_configuration re-reads it."""
    global _config, _loaded
    _config = {}
    _loaded = False


def _env_name(key: str) -> str:
    return ENV_PREFIX + key.upper().replace(".", "_")


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _lookup_nested(data: Dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    node: Any = data
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Priority:
    1. Test configuration (if set)
    2. Environment variable JMAPBRIDGE_<KEY>
    3. YAML config (nested lookup)
    4. Default value

    Args:
        key: The configuration key, e.g. 'retry.max_attempts'.
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]

    env_value = os.environ.get(_env_name(key))
    if env_value is not None:
        return _coerce(env_value)

    value = _lookup_nested(_config, key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Convenience Functions ---

def get_api_token() -> str:
    """Returns the bearer token for the remote API.

    Checks JMAPBRIDGE_API_TOKEN / yaml 'api_token' first, then the
    FASTMAIL_API_TOKEN variable used by Fastmail tooling.

    Raises:
        ConfigurationError: If no token is configured.
    """
    token = get_config("api_token") or os.environ.get("FASTMAIL_API_TOKEN")
    if not token:
        raise ConfigurationError(
            "No API token configured. Set JMAPBRIDGE_API_TOKEN or FASTMAIL_API_TOKEN."
        )
    return str(token)


def get_base_url() -> str:
    """Returns the JMAP base endpoint (the session document lives at <base>/session)."""
    return str(get_config("base_url", DEFAULT_BASE_URL)).rstrip("/")


def get_engine_settings() -> EngineSettings:
    """Builds EngineSettings from configuration with sensible defaults."""
    defaults = EngineSettings()
    settings = EngineSettings(
        max_concurrency=int(get_config("dispatch.max_concurrency", defaults.max_concurrency)),
        max_attempts=int(get_config("retry.max_attempts", defaults.max_attempts)),
        base_delay_s=float(get_config("retry.base_delay_s", defaults.base_delay_s)),
        max_delay_s=float(get_config("retry.max_delay_s", defaults.max_delay_s)),
        jitter_ratio=float(get_config("retry.jitter_ratio", defaults.jitter_ratio)),
        http_timeout_s=float(get_config("http.timeout_s", defaults.http_timeout_s)),
        user_agent=str(get_config("http.user_agent", defaults.user_agent)),
    )
    if settings.max_concurrency < 1:
        raise ConfigurationError("dispatch.max_concurrency must be at least 1")
    if settings.max_attempts < 1:
        raise ConfigurationError("retry.max_attempts must be at least 1")
    if settings.base_delay_s < 0 or settings.max_delay_s < settings.base_delay_s:
        raise ConfigurationError("retry delays must satisfy 0 <= base_delay_s <= max_delay_s")
    if not 0 <= settings.jitter_ratio < 1:
        raise ConfigurationError("retry.jitter_ratio must be in [0, 1)")
    return settings


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values for testing purposes.

    These values override any other source.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration keys: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
