"""Support helpers: configuration value and default filesystem locations."""

from devenv.support.config import DevEnvConfig, load_config

__all__ = ["DevEnvConfig", "load_config"]
