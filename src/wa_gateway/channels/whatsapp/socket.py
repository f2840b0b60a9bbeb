"""
Protocol socket abstraction.

The WhatsApp protocol (noise handshake, multi-device sync, encryption)
lives in an external library. The gateway only sees this event-emitting
socket:

Events:
    qr(code: str)                               - scan this to log in
    open(user_jid: str, name: Optional[str])    - authenticated and online
    close(status_code: Optional[int])           - connection lost
    messages(batch_type: str, messages: list)   - inbound RawMessage batch
    creds.update(creds: dict)                   - persist new credentials

Handlers may be plain functions or coroutines.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

EVENT_QR = "qr"
EVENT_OPEN = "open"
EVENT_CLOSE = "close"
EVENT_MESSAGES = "messages"
EVENT_CREDS_UPDATE = "creds.update"

BATCH_NOTIFY = "notify"


class DisconnectReason(IntEnum):
    """Disconnect status codes reported by the protocol library"""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass
class SocketUser:
    """The account the socket is logged in as."""
    id: str
    name: Optional[str] = None


@dataclass
class RawMessage:
    """Inbound message as delivered by the protocol library."""
    id: str
    remote_jid: str
    body: Optional[str]
    timestamp: int = 0
    from_me: bool = False
    push_name: Optional[str] = None

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "RawMessage":
        """Create from bridge message format."""
        key = _as_dict(data.get("key"))
        body = data.get("body")
        if body is None:
            message = _as_dict(data.get("message"))
            body = message.get("conversation") or (
                _as_dict(message.get("extendedTextMessage")).get("text")
            )
        if not isinstance(body, str):
            body = None

        return cls(
            id=key.get("id") or data.get("id") or "",
            remote_jid=key.get("remoteJid") or data.get("from") or "",
            body=body,
            timestamp=parse_timestamp(data.get("messageTimestamp", data.get("timestamp"))),
            from_me=bool(key.get("fromMe", data.get("fromMe", False))),
            push_name=data.get("pushName"),
        )


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_timestamp(value: Any) -> int:
    """Seconds since epoch as int; anything unparseable becomes 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, dict) and isinstance(value.get("low"), int):
        return value["low"]
    return 0


Handler = Callable[..., Any]


class GatewaySocket(ABC):
    """Event-emitting connection to the messaging network."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self.user: Optional[SocketUser] = None

    def on(self, event: str, handler: Handler) -> None:
        """Register a handler for an event."""
        self._handlers[event].append(handler)

    async def emit(self, event: str, *args: Any) -> None:
        """Deliver an event to every handler, in registration order."""
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.exception(f"Error in '{event}' handler: {e}")

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection; lifecycle events follow asynchronously."""
        ...

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> Dict[str, Any]:
        """Send a text message to a chat."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release resources."""
        ...
