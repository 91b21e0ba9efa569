"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.linkhub/config.yaml), plus typed views of the
enrichment queue settings.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".linkhub"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "LINKHUB_"

DEFAULT_PROVIDER = "groq"
DEFAULT_MODELS = ["llama-3.1-8b-instant", "llama-3.3-70b-versatile", "gemma2-9b-it"]

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


@dataclass(frozen=True)
class QueueSettings:
    """Configuration surface consumed by the enrichment queue."""
    requests_per_minute: int = 15
    cooldown_seconds: float = 60.0
    max_consecutive_errors: int = 5
    batch_size: int = 3
    base_delay_seconds: float = 6.0
    min_delay_seconds: float = 4.0
    max_delay_seconds: float = 60.0
    error_retry_grace_seconds: float = 300.0
    idle_poll_seconds: float = 30.0
    auto_processing: bool = True


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False): # override=False: ENV VARS take precedence
            logger.info(f"Loaded environment variables from: {dotenv_path}")

    # 3. Environment Variables (Highest priority) are handled in get_config
    _loaded = True


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys ({'queue': {'batch_size': 3}} -> 'queue.batch_size')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict) and key != "token_limits":
            flat.update(_flatten(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (LINKHUB_QUEUE_BATCH_SIZE for 'queue.batch_size', or the bare upper-case key)
    3. YAML config
    4. Default value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    for candidate in (ENV_PREFIX + env_key, env_key):
        if candidate in os.environ:
            return _coerce(os.environ[candidate])

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None


# --- Convenience Functions ---

def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', '1', 'yes', 'on'):
            return True
        if lowered in ('false', '0', 'no', 'off'):
            return False
        logger.warning(f"Unexpected boolean value '{value}'. Using default {default}.")
        return default
    return bool(value)


def get_queue_settings() -> QueueSettings:
    """Builds the queue settings from configuration, falling back to defaults."""
    defaults = QueueSettings()
    return QueueSettings(
        requests_per_minute=int(get_config('queue.requests_per_minute', defaults.requests_per_minute)),
        cooldown_seconds=float(get_config('queue.cooldown_seconds', defaults.cooldown_seconds)),
        max_consecutive_errors=int(get_config('queue.max_consecutive_errors', defaults.max_consecutive_errors)),
        batch_size=int(get_config('queue.batch_size', defaults.batch_size)),
        base_delay_seconds=float(get_config('queue.base_delay_seconds', defaults.base_delay_seconds)),
        min_delay_seconds=float(get_config('queue.min_delay_seconds', defaults.min_delay_seconds)),
        max_delay_seconds=float(get_config('queue.max_delay_seconds', defaults.max_delay_seconds)),
        error_retry_grace_seconds=float(get_config('queue.error_retry_grace_seconds', defaults.error_retry_grace_seconds)),
        idle_poll_seconds=float(get_config('queue.idle_poll_seconds', defaults.idle_poll_seconds)),
        auto_processing=_as_bool(get_config('queue.auto_processing'), defaults.auto_processing),
    )


def get_default_provider() -> str:
    provider = get_config('ai.provider', DEFAULT_PROVIDER)
    return str(provider).lower() if provider else DEFAULT_PROVIDER


def get_model_list() -> List[str]:
    """Ordered model identifiers; accepts a YAML list or a comma-separated string."""
    models = get_config('ai.models')
    if isinstance(models, str):
        models = [m.strip() for m in models.split(',')]
    if not models:
        return list(DEFAULT_MODELS)
    return [str(m) for m in models if str(m).strip()]


def get_token_limits() -> Dict[str, int]:
    limits = get_config('ai.token_limits') or {}
    if not isinstance(limits, dict):
        logger.warning("ai.token_limits must be a mapping of model -> tokens per minute; ignoring.")
        return {}
    return {str(k): int(v) for k, v in limits.items()}


def get_groq_api_key() -> Optional[str]:
    key = get_config('GROQ_API_KEY') or get_config('groq.api_key')
    return str(key) if key is not None else None


def get_openai_api_key() -> Optional[str]:
    key = get_config('OPENAI_API_KEY') or get_config('openai.api_key')
    return str(key) if key is not None else None


def get_path(key: str, default: Path) -> Path:
    value = get_config(key)
    return Path(value).expanduser() if value else default


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value in memory for the current process."""
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
