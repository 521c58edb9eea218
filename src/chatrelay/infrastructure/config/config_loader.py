"""
Configuration loading.

Resolves the config file path, parses YAML, and validates the result into a
``RelayConfig``. A missing default file is not an error: chatrelay runs with
an empty configuration until one is written.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import structlog
import yaml
from pydantic import ValidationError

from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import ConfigError

logger = structlog.get_logger(__name__)

CONFIG_PATH_ENV = "CHATRELAY_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path("~/.chatrelay/config.yaml")


def resolve_config_path(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[Path, bool]:
    """Return the config path and whether it was chosen explicitly."""
    env = os.environ if env is None else env
    if path:
        return Path(path).expanduser(), True
    env_path = (env.get(CONFIG_PATH_ENV) or "").strip()
    if env_path:
        return Path(env_path).expanduser(), True
    return DEFAULT_CONFIG_PATH.expanduser(), False


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> RelayConfig:
    """Load and validate the configuration file.

    Args:
        path: Explicit config path. Falls back to ``CHATRELAY_CONFIG_PATH``,
            then ``~/.chatrelay/config.yaml``.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        Validated configuration.

    Raises:
        ConfigError: If an explicitly requested file is missing, the YAML is
            malformed, or the content fails schema validation.
    """
    config_path, explicit = resolve_config_path(path, env)

    if not config_path.exists():
        if explicit:
            raise ConfigError(
                f"Config file not found: {config_path}",
                details={"path": str(config_path)},
            )
        logger.debug("config.default_missing", path=str(config_path))
        return RelayConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(
            f"Failed to read config file {config_path}: {exc}",
            details={"path": str(config_path)},
        ) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Config file {config_path} must contain a mapping at the top level",
            details={"path": str(config_path)},
        )

    try:
        config = RelayConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid config file {config_path}: {exc.error_count()} validation error(s)",
            details={"path": str(config_path), "errors": exc.errors(include_url=False)},
        ) from exc

    logger.debug("config.loaded", path=str(config_path))
    return config
