"""
Store layer for environment persistence.

Canonical exports:
- EnvironmentRegistry: Environment record persistence with JSONL locking and atomic writes
"""

from devenv.store.registry import EnvironmentRegistry

__all__ = [
    "EnvironmentRegistry",
]
