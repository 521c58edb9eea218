"""Configuration file loading."""

from chatrelay.infrastructure.config.config_loader import load_config

__all__ = ["load_config"]
