"""devenv: worktree-backed development environments in containers."""

from devenv.store import EnvironmentRegistry
from devenv.core.models import EnvironmentRecord
from devenv.engine import Orchestrator
from devenv.support.config import DevEnvConfig
from devenv import adapters

__version__ = "0.1.0"

__all__ = [
    "EnvironmentRegistry",
    "EnvironmentRecord",
    "Orchestrator",
    "DevEnvConfig",
    "adapters",
]
