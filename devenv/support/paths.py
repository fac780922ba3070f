"""
Path helpers for default config, registry and worktree locations.
"""

import os
from pathlib import Path


def get_config_home() -> Path:
    """Get the devenv configuration directory (XDG aware).

    Returns:
        Absolute Path to ~/.config/devenv (or $XDG_CONFIG_HOME/devenv).
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / "devenv"
    return Path.home() / ".config" / "devenv"


def get_data_home() -> Path:
    """Get the devenv data directory (XDG aware).

    Returns:
        Absolute Path to ~/.local/share/devenv (or $XDG_DATA_HOME/devenv).
    """
    xdg_data_home = os.environ.get("XDG_DATA_HOME", "")
    if xdg_data_home:
        return Path(xdg_data_home).expanduser() / "devenv"
    return Path.home() / ".local" / "share" / "devenv"


def default_config_path() -> Path:
    """Config file used when neither --config nor $DEVENV_CONFIG is given."""
    return get_config_home() / "config.yaml"


def default_registry_path() -> Path:
    """Registry JSONL file location."""
    return get_data_home() / "environments.jsonl"


def default_worktrees_root() -> Path:
    """Root directory under which one worktree per environment is created."""
    return get_data_home() / "worktrees"
