from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"
    ERROR = "error"


_ORDER = [
    ConnectionState.DISCONNECTED,
    ConnectionState.CONNECTING,
    ConnectionState.CONNECTED,
    ConnectionState.INITIALIZING,
    ConnectionState.READY,
    ConnectionState.CLOSED,
]


def can_transition(current: ConnectionState, target: ConnectionState) -> bool:
    """
    Transitions only move forward, except that ``error`` is reachable from
    anywhere and ``disconnected`` (explicit teardown) is reachable from anywhere.
    ``error`` is left only through teardown.
    """
    if current == target:
        return False
    if target in (ConnectionState.ERROR, ConnectionState.DISCONNECTED):
        return True
    if current == ConnectionState.ERROR:
        return False
    return _ORDER.index(target) > _ORDER.index(current)
