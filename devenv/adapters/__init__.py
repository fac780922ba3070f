"""Runtime adapters for environment orchestration.

Provides the capability interfaces the engine depends on and their concrete
backends. Each adapter module can be imported independently:

- devenv.adapters.git: Git worktree management
- devenv.adapters.docker: Docker container lifecycle
"""

from devenv.adapters import protocol
from devenv.adapters.protocol import ContainerRuntimeAdapter, VersionControlAdapter

__all__ = [
    "protocol",
    "ContainerRuntimeAdapter",
    "VersionControlAdapter",
]
