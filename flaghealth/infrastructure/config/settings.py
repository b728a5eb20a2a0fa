"""flaghealth settings: the LaunchDarkly credential and base URL, logging
options and the resilience tunables.

Values are read from ~/.flaghealth/config.yaml, a .env file and the
process environment. Keys are dotted ('resilience.wave_size').
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".flaghealth"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "FLAGHEALTH_"
DEFAULT_BASE_URL = "https://app.launchdarkly.com"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


@dataclass(frozen=True)
class ResilienceSettings:
    """Tunables for throttling, retries and batch fetching.

    Defaults encode the upstream service's quota windows.
    """
    wave_size: int = 15
    wave_cooldown_s: float = 0.1
    throttle_threshold: int = 10
    max_throttle_wait_s: float = 15.0
    max_retries: int = 3
    initial_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 30.0
    project_page_size: int = 20
    request_timeout_s: float = 30.0

    def __post_init__(self):
        if self.wave_size <= 0 or self.project_page_size <= 0:
            raise ValueError("wave_size and project_page_size must be positive.")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative.")
        if self.initial_delay_s < 0 or self.max_delay_s < 0 or self.wave_cooldown_s < 0:
            raise ValueError("Delays cannot be negative.")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1.")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive.")
        if self.throttle_threshold <= 0 or self.max_throttle_wait_s <= 0:
            raise ValueError("throttle_threshold and max_throttle_wait_s must be positive.")


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Reads the YAML file and the .env file into the settings store.

    Lookups by get_config then resolve, first match wins: test overrides,
    environment variables (.env entries never replace real ones), YAML
    values, the caller's default.

    Args:
        config_file: YAML file with nested sections (launchdarkly, logging, resilience).
        env_file: .env file to load; when None the nearest one at or above cwd is used.
        force: Re-read the files even when already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Settings already loaded; skipping.")
        return

    _config = {}

    if config_file.is_file():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Read settings from {config_file}")
            elif yaml_config is not None:
                logger.warning(f"Ignoring {config_file}: top level is not a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Ignoring unreadable settings file {config_file}: {e}")
    else:
        logger.debug(f"No settings file at {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Read environment entries from {dotenv_path}")
    else:
        logger.debug("No .env file at or above the working directory.")

    _loaded = True


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def get_config(key: str, default: Any = None) -> Any:
    """Gets a configuration value by dotted key.

    Environment variables are checked as FLAGHEALTH_<KEY> and then <KEY>,
    upper-cased with dots replaced by underscores.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace(".", "_")
    for candidate in (f"{ENV_PREFIX}{env_key}", env_key):
        if candidate in os.environ:
            return _coerce(os.environ[candidate])

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Nearest .env file in the working directory or one of its parents."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Convenience Functions ---

def get_api_key() -> Optional[str]:
    """Gets the LaunchDarkly access token (LD_API_KEY or launchdarkly.api_key)."""
    key = get_config("LD_API_KEY") or get_config("launchdarkly.api_key")
    return str(key).strip() if key else None


def get_base_url() -> str:
    return str(get_config("launchdarkly.base_url", DEFAULT_BASE_URL)).rstrip("/")


def get_resilience_settings() -> ResilienceSettings:
    """Builds ResilienceSettings from the 'resilience.*' keys."""
    defaults = ResilienceSettings()
    return ResilienceSettings(
        wave_size=int(get_config("resilience.wave_size", defaults.wave_size)),
        wave_cooldown_s=float(get_config("resilience.wave_cooldown_s", defaults.wave_cooldown_s)),
        throttle_threshold=int(get_config("resilience.throttle_threshold", defaults.throttle_threshold)),
        max_throttle_wait_s=float(get_config("resilience.max_throttle_wait_s", defaults.max_throttle_wait_s)),
        max_retries=int(get_config("resilience.max_retries", defaults.max_retries)),
        initial_delay_s=float(get_config("resilience.initial_delay_s", defaults.initial_delay_s)),
        backoff_factor=float(get_config("resilience.backoff_factor", defaults.backoff_factor)),
        max_delay_s=float(get_config("resilience.max_delay_s", defaults.max_delay_s)),
        project_page_size=int(get_config("resilience.project_page_size", defaults.project_page_size)),
        request_timeout_s=float(get_config("resilience.request_timeout_s", defaults.request_timeout_s)),
    )


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Sets configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Test overrides: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clears all testing configuration values."""
    _test_config.clear()
