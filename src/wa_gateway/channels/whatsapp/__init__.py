"""
WhatsApp Channel

Protocol socket abstraction and its Node.js bridge implementation.
"""

from .client import BridgeSocket
from .credentials import CredentialStore
from .qr import print_qr, render_qr_ascii
from .socket import DisconnectReason, GatewaySocket, RawMessage, SocketUser

__all__ = [
    "BridgeSocket",
    "CredentialStore",
    "DisconnectReason",
    "GatewaySocket",
    "RawMessage",
    "SocketUser",
    "print_qr",
    "render_qr_ascii",
]
