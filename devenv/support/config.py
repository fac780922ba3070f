"""
Configuration loading for devenv.

A DevEnvConfig value is built once at process start (from a YAML file plus
defaults) and passed explicitly into the registry, adapters, engine and
server. Nothing in the core reads configuration from the environment.
"""

import os
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from devenv.core.exceptions import ValidationError
from devenv.support.paths import (
    default_config_path,
    default_registry_path,
    default_worktrees_root,
)
from devenv.constants import (
    DEFAULT_BASE_BRANCH,
    DEFAULT_CONTAINER_COMMAND,
    DEFAULT_DOCKERFILE,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_WORKSPACE_MOUNT,
)


CONFIG_ENV_VAR = "DEVENV_CONFIG"

# Keys whose default is None but whose value is a number of seconds
_OPTIONAL_SECONDS = ("lock_timeout",)


@dataclass
class DevEnvConfig:
    """Process-wide configuration value."""

    repo_root: str = field(default_factory=lambda: str(Path.cwd()))
    worktrees_root: str = field(default_factory=lambda: str(default_worktrees_root()))
    registry_path: str = field(default_factory=lambda: str(default_registry_path()))
    docker_host: Optional[str] = None
    server_host: str = DEFAULT_SERVER_HOST
    server_port: int = DEFAULT_SERVER_PORT
    dockerfile: str = DEFAULT_DOCKERFILE
    default_image: Optional[str] = None
    workspace_mount: str = DEFAULT_WORKSPACE_MOUNT
    container_command: List[str] = field(
        default_factory=lambda: list(DEFAULT_CONTAINER_COMMAND)
    )
    default_base_branch: str = DEFAULT_BASE_BRANCH
    git_timeout: float = 30.0
    docker_timeout: float = 60.0
    build_timeout: float = 900.0
    exec_timeout: float = 300.0
    # Unset: lifecycle operations on one name queue until the ones ahead finish
    lock_timeout: Optional[float] = None
    stop_grace: int = 10
    server_workers: int = 16

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DevEnvConfig":
        """
        Build a config from a mapping, validating keys and value types.

        Raises:
            ValidationError: On unknown keys or values of the wrong type.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValidationError(f"Unknown config keys: {', '.join(unknown)}")

        values = {}
        for key, raw in data.items():
            values[key] = _coerce(key, raw, cls._default_for(key))
        config = cls(**values)
        config.validate()
        return config

    @classmethod
    def _default_for(cls, key: str) -> Any:
        return getattr(cls(), key)

    def validate(self) -> None:
        """Check value ranges."""
        if not 0 < int(self.server_port) < 65536:
            raise ValidationError(f"server_port out of range: {self.server_port}")
        for key in (
            "git_timeout",
            "docker_timeout",
            "build_timeout",
            "exec_timeout",
        ):
            if getattr(self, key) <= 0:
                raise ValidationError(f"{key} must be positive")
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValidationError("lock_timeout must be positive when set")
        if self.server_workers < 1:
            raise ValidationError("server_workers must be at least 1")
        if not self.container_command:
            raise ValidationError("container_command cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(key: str, raw: Any, default: Any) -> Any:
    """Coerce a raw YAML or command-line value to the type of the default."""
    if raw is None:
        return None
    try:
        if key in _OPTIONAL_SECONDS:
            if isinstance(raw, str) and raw.strip().lower() in ("", "none", "null"):
                return None
            return float(raw)
        if isinstance(default, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, list):
            if isinstance(raw, str):
                return raw.split()
            return [str(item) for item in raw]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid value for {key}: {raw!r} ({e})")
    return str(raw)


def resolve_config_path(path: Optional[str] = None) -> Path:
    """Pick the config file: explicit path, then $DEVENV_CONFIG, then the default."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR, "")
    if env_path:
        return Path(env_path).expanduser()
    return default_config_path()


def read_config_file(path: Path) -> Dict[str, Any]:
    """Read the raw mapping from a YAML config file (empty if missing)."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must contain a mapping")
    return data


def load_config(path: Optional[str] = None, **overrides: Any) -> DevEnvConfig:
    """
    Load configuration once at process start.

    Args:
        path: Optional explicit config file path.
        **overrides: Values that take precedence over the file (None is ignored).

    Returns:
        DevEnvConfig with file values layered over defaults.
    """
    data = read_config_file(resolve_config_path(path))
    data.update({k: v for k, v in overrides.items() if v is not None})
    return DevEnvConfig.from_dict(data)


def set_config_value(path: Path, key: str, value: str) -> DevEnvConfig:
    """
    Persist a single key into the YAML config file.

    Returns:
        The resulting, validated config.
    """
    data = read_config_file(path)
    if key not in {f.name for f in fields(DevEnvConfig)}:
        raise ValidationError(f"Unknown config key: {key}")

    data[key] = _coerce(key, value, DevEnvConfig._default_for(key))
    config = DevEnvConfig.from_dict(data)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")
    return config
