"""
Control-plane server layer.

Canonical exports:
- ControlPlaneServer: aiohttp websocket server over the orchestration engine
- Session: Per-connection subscription and in-flight request state
"""

from devenv.server.app import ControlPlaneServer
from devenv.server.session import Session

__all__ = [
    "ControlPlaneServer",
    "Session",
]
