"""
envctl CLI command implementations.

This package contains individual command handlers for the envctl CLI.
Commands are organized into separate modules for maintainability.

Public API:
- EnvCLI: Facade class holding configuration and the engine, delegating to
  the command modules
"""

import argparse
from pathlib import Path
from typing import Optional

# Import command modules (not functions) to avoid namespace conflicts
from devenv.cli import cmd_create as _cmd_create_module
from devenv.cli import cmd_list as _cmd_list_module
from devenv.cli import cmd_status as _cmd_status_module
from devenv.cli import cmd_lifecycle as _cmd_lifecycle_module
from devenv.cli import cmd_exec as _cmd_exec_module
from devenv.cli import cmd_server as _cmd_server_module
from devenv.cli import cmd_config as _cmd_config_module

from devenv.adapters.docker import DockerRuntimeAdapter
from devenv.adapters.git import GitWorktreeAdapter
from devenv.engine import Orchestrator
from devenv.store import EnvironmentRegistry
from devenv.support.config import DevEnvConfig, load_config, resolve_config_path


def build_engine(config: DevEnvConfig) -> Orchestrator:
    """Wire registry, adapters and engine from one configuration value."""
    registry = EnvironmentRegistry(config.registry_path)
    vcs = GitWorktreeAdapter(
        config.repo_root, config.worktrees_root, timeout=config.git_timeout
    )
    runtime = DockerRuntimeAdapter(
        docker_host=config.docker_host,
        timeout=config.docker_timeout,
        build_timeout=config.build_timeout,
        stop_grace=config.stop_grace,
        container_command=config.container_command,
        workspace_mount=config.workspace_mount,
    )
    return Orchestrator(config, registry, vcs, runtime)


class EnvCLI:
    """Environment CLI interface.

    Configuration is loaded and the engine built on first use, so commands
    that only touch the config file work even when git or docker are absent.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        json_output: bool = False,
        config: Optional[DevEnvConfig] = None,
        engine: Optional[Orchestrator] = None,
    ):
        self.config_path: Path = resolve_config_path(config_path)
        self.json = json_output
        self._config = config
        self._engine = engine

    @property
    def config(self) -> DevEnvConfig:
        if self._config is None:
            self._config = load_config(str(self.config_path))
        return self._config

    @config.setter
    def config(self, value: DevEnvConfig) -> None:
        self._config = value
        self._engine = None

    @property
    def engine(self) -> Orchestrator:
        if self._engine is None:
            self._engine = build_engine(self.config)
        return self._engine

    def cmd_create(self, args: argparse.Namespace) -> int:
        """Create an environment (delegates to cmd_create module)."""
        return _cmd_create_module.cmd_create(self, args)

    def cmd_list(self, args: argparse.Namespace) -> int:
        """List environments (delegates to cmd_list module)."""
        return _cmd_list_module.cmd_list(self, args)

    def cmd_status(self, args: argparse.Namespace) -> int:
        """Show one environment (delegates to cmd_status module)."""
        return _cmd_status_module.cmd_status(self, args)

    def cmd_start(self, args: argparse.Namespace) -> int:
        """Start an environment (delegates to cmd_lifecycle module)."""
        return _cmd_lifecycle_module.cmd_start(self, args)

    def cmd_stop(self, args: argparse.Namespace) -> int:
        """Stop an environment (delegates to cmd_lifecycle module)."""
        return _cmd_lifecycle_module.cmd_stop(self, args)

    def cmd_destroy(self, args: argparse.Namespace) -> int:
        """Destroy an environment (delegates to cmd_lifecycle module)."""
        return _cmd_lifecycle_module.cmd_destroy(self, args)

    def cmd_exec(self, args: argparse.Namespace) -> int:
        """Run a command in an environment (delegates to cmd_exec module)."""
        return _cmd_exec_module.cmd_exec(self, args)

    def cmd_server(self, args: argparse.Namespace) -> int:
        """Run the control-plane server (delegates to cmd_server module)."""
        return _cmd_server_module.cmd_server(self, args)

    def cmd_config(self, args: argparse.Namespace) -> int:
        """Show or edit configuration (delegates to cmd_config module)."""
        return _cmd_config_module.cmd_config(self, args)


__all__ = [
    "EnvCLI",
    "build_engine",
]
