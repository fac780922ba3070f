"""Orchestration engine: lifecycle sequencing, rollback and reconciliation."""

from devenv.engine.locks import NameLocks
from devenv.engine.orchestrator import Orchestrator, wrap_adapter_error

__all__ = [
    "NameLocks",
    "Orchestrator",
    "wrap_adapter_error",
]
