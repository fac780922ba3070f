"""
Shared fixtures for the devenv test suite.

Engine, CLI and server tests run against in-memory adapters from
devenv.tests.fakes and a registry file in a temporary directory.
"""

import pytest

from devenv.engine import Orchestrator
from devenv.store import EnvironmentRegistry
from devenv.support.config import DevEnvConfig
from devenv.tests.fakes import FakeRuntime, FakeVcs


@pytest.fixture
def config(tmp_path):
    """Configuration pointing every path into a temporary directory."""
    repo = tmp_path / "repo"
    repo.mkdir()
    return DevEnvConfig(
        repo_root=str(repo),
        worktrees_root=str(tmp_path / "worktrees"),
        registry_path=str(tmp_path / "state" / "environments.jsonl"),
    )


@pytest.fixture
def registry(config):
    return EnvironmentRegistry(config.registry_path)


@pytest.fixture
def vcs(config):
    return FakeVcs(config.worktrees_root)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def engine(config, registry, vcs, runtime):
    return Orchestrator(config, registry, vcs, runtime)


@pytest.fixture
def events(engine):
    """Status changes emitted by the engine, in order."""
    received = []
    engine.add_listener(received.append)
    return received
