"""Configuration loader for keychain-controller."""
import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .command import DEFAULT_TIMEOUT_SECONDS
from .errors import ConfigError
from .template import TemplateExpander

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "KEYCHAIN_CONFIG"

# Environment variables override the matching config file entries
ENV_OVERRIDES = {
    "CONTROLLER_NAMESPACE": ("controller", "namespace"),
    "GENERATE_CERT_COMMAND": ("commands", "generate_cert"),
    "GET_SECRET_COMMAND": ("commands", "get_secret"),
}

DEFAULT_ALGORITHM = "rsa:4096"
DEFAULT_DAYS = 365
DEFAULT_SUBJECT = "/CN=keychain-controller/O=Aqueduct/C=US"
DEFAULT_FAILURE_BACKOFF_SECONDS = 300
DEFAULT_RETRY_BASE_SECONDS = 5
DEFAULT_RETRY_MAX_SECONDS = 300
DEFAULT_MAX_RETRIES = 10


def default_config_path() -> Path:
    return Path.home() / ".config" / "keychain-controller" / "config.yml"


@dataclass(frozen=True)
class ControllerConfig:
    """Validated controller settings, passed to each component at construction."""
    controller_namespace: str
    generate_cert_template: str
    get_secret_template: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    split_arguments: bool = False
    algorithm: str = DEFAULT_ALGORITHM
    days: int = DEFAULT_DAYS
    subject: str = DEFAULT_SUBJECT
    failure_backoff_seconds: float = DEFAULT_FAILURE_BACKOFF_SECONDS
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS
    retry_max_seconds: float = DEFAULT_RETRY_MAX_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    source: Optional[str] = None

    def cert_expander(self) -> TemplateExpander:
        return TemplateExpander(self.generate_cert_template, "generate_cert")

    def secret_expander(self) -> TemplateExpander:
        return TemplateExpander(self.get_secret_template, "get_secret")


def _get_config_path(explicit: Optional[str] = None) -> Optional[str]:
    """
    Find the config file.

    Priority order:
    1. Explicit path (--config)
    2. KEYCHAIN_CONFIG environment variable
    3. Default location: ~/.config/keychain-controller/config.yml

    Returns:
        Absolute path, or None when no file exists and none was asked for

    Raises:
        ConfigError: If an explicitly requested file doesn't exist
    """
    requested = explicit or os.getenv(CONFIG_PATH_ENV)
    if requested:
        config_path = Path(requested).expanduser()
        if not config_path.is_file():
            raise ConfigError(
                f"Configuration file not found at: {config_path}\n"
                f"Check the --config argument or the {CONFIG_PATH_ENV} environment variable."
            )
        return str(config_path.resolve())

    default_config = default_config_path()
    if default_config.is_file():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    logger.info("No config file found, using environment variables only")
    return None


def _read_yaml(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must contain a mapping at the top level")
    return config


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' in config must be a mapping")
    return section


def _number(section: Dict[str, Any], path: str, key: str, default: float, minimum: float = 0) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{path}.{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{path}.{key}' must be at least {minimum}, got {value}")
    return value


def load_config(path: Optional[str] = None) -> ControllerConfig:
    """
    Load and validate configuration from YAML file and environment.

    Args:
        path: Explicit config file path; see _get_config_path for the fallbacks

    Returns:
        ControllerConfig with both command templates already compiled once

    Raises:
        ConfigError: If the file is unreadable, a required value is missing, or a
            command template is malformed
    """
    config_path = _get_config_path(path)
    config = _read_yaml(config_path) if config_path else {}

    controller = dict(_section(config, "controller"))
    commands = dict(_section(config, "commands"))
    identity = _section(config, "identity")
    reconcile = _section(config, "reconcile")
    sections = {"controller": controller, "commands": commands}

    for env_name, (section_name, key) in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            logger.debug(f"Using {env_name} from environment")
            sections[section_name][key] = env_value

    namespace = controller.get("namespace")
    if not namespace:
        raise ConfigError(
            "Missing 'controller.namespace' in config\n"
            "Set it in the config file or through the CONTROLLER_NAMESPACE environment variable."
        )

    for key, env_name in (("generate_cert", "GENERATE_CERT_COMMAND"), ("get_secret", "GET_SECRET_COMMAND")):
        if not commands.get(key):
            raise ConfigError(
                f"Missing 'commands.{key}' in config\n"
                f"Set it in the config file or through the {env_name} environment variable."
            )

    days = identity.get("days", DEFAULT_DAYS)
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ConfigError(f"'identity.days' must be a positive integer, got {days!r}")

    max_retries = reconcile.get("max_retries", DEFAULT_MAX_RETRIES)
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
        raise ConfigError(f"'reconcile.max_retries' must be a non-negative integer, got {max_retries!r}")

    result = ControllerConfig(
        controller_namespace=str(namespace),
        generate_cert_template=str(commands["generate_cert"]),
        get_secret_template=str(commands["get_secret"]),
        timeout_seconds=_number(commands, "commands", "timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        split_arguments=bool(commands.get("split_arguments", False)),
        algorithm=str(identity.get("algorithm", DEFAULT_ALGORITHM)),
        days=days,
        subject=str(identity.get("subject", DEFAULT_SUBJECT)),
        failure_backoff_seconds=_number(reconcile, "reconcile", "failure_backoff_seconds",
                                        DEFAULT_FAILURE_BACKOFF_SECONDS),
        retry_base_seconds=_number(reconcile, "reconcile", "retry_base_seconds", DEFAULT_RETRY_BASE_SECONDS),
        retry_max_seconds=_number(reconcile, "reconcile", "retry_max_seconds", DEFAULT_RETRY_MAX_SECONDS),
        max_retries=max_retries,
        source=config_path,
    )

    # Fail at startup, not on the first reconcile
    result.cert_expander()
    result.secret_expander()

    logger.info(f"Configuration loaded successfully from {config_path or 'environment'}")
    logger.debug(f"Controller namespace: {result.controller_namespace}")
    return result
