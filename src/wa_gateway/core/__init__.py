"""
Gateway Core

Status model, owner registry, dedupe/throttle guard and the lifecycle
controller (wa_gateway.core.gateway).
"""

from .errors import ConfigError, GatewayError, InsecureBindError, NotConnectedError, ReplyError
from .status import ConnectionState, StatusSnapshot, StatusStore

__all__ = [
    "ConfigError",
    "ConnectionState",
    "GatewayError",
    "InsecureBindError",
    "NotConnectedError",
    "ReplyError",
    "StatusSnapshot",
    "StatusStore",
]
