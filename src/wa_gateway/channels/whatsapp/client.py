"""
WhatsApp Bridge Socket

Connects to the Node.js WhatsApp bridge, which hosts the protocol library
and exposes it over HTTP and WebSocket.

Architecture:
    GatewayController <-> BridgeSocket <-> Bridge (Node.js) <-> WhatsApp

Bridge HTTP API:
    GET  /status     - bridge health
    POST /session    - restore stored credentials: {"creds": {...} | null}
    POST /send       - {"chatId": str, "message": str}

Bridge WebSocket frames (JSON, keyed by "type"):
    qr            {"qr": str}
    ready / open  {"user": {"id": str, "name": str}}
    disconnected  {"statusCode": int | null}
    messages      {"upsertType": "notify" | "append", "messages": [...]}
    message       {"message": {...}}   (single notify message)
    creds         {"creds": {...}}
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ...core.errors import NotConnectedError
from .credentials import CredentialStore
from .socket import (
    BATCH_NOTIFY,
    EVENT_CLOSE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES,
    EVENT_OPEN,
    EVENT_QR,
    GatewaySocket,
    RawMessage,
    SocketUser,
)

logger = logging.getLogger(__name__)


def _status_code(data: Dict[str, Any]) -> Optional[int]:
    for key in ("statusCode", "code", "reason"):
        value = data.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


class BridgeSocket(GatewaySocket):
    """
    GatewaySocket backed by the Node.js bridge.

    A dropped WebSocket is reported as close(None) so the controller can
    schedule a reconnect; close() called by the owner is silent.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        http_url: str = "http://localhost:3000",
        ws_url: str = "ws://localhost:3001",
    ):
        super().__init__()
        self.credentials = credentials
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._closing = False

    async def connect(self) -> None:
        """Connect to the bridge HTTP API and WebSocket."""
        self._http_session = aiohttp.ClientSession()

        try:
            status = await self.get_status()
            logger.info(f"Bridge status: {status}")
        except Exception as e:
            await self._release()
            raise ConnectionError(
                f"Cannot connect to WhatsApp bridge at {self.http_url}. "
                f"Make sure the bridge is running."
            ) from e

        try:
            await self._restore_session()
            self._ws = await self._http_session.ws_connect(self.ws_url)
        except Exception as e:
            await self._release()
            raise ConnectionError(f"Cannot connect to WebSocket at {self.ws_url}") from e

        logger.info(f"Connected to WhatsApp bridge WebSocket: {self.ws_url}")
        self._listen_task = asyncio.create_task(self._listen())

    async def close(self) -> None:
        """Close the bridge connection without emitting close."""
        self._closing = True

        task = self._listen_task
        self._listen_task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._release()
        logger.info("Disconnected from WhatsApp bridge")

    # =========================================================================
    # HTTP API
    # =========================================================================

    async def get_status(self) -> Dict[str, Any]:
        """Get bridge and WhatsApp status."""
        async with self._http_session.get(f"{self.http_url}/status") as resp:
            resp.raise_for_status()
            return await resp.json()

    async def send_text(self, jid: str, text: str) -> Dict[str, Any]:
        """
        Send a text message to a WhatsApp chat.

        Args:
            jid: Chat JID (e.g., "1234567890@s.whatsapp.net" or "group_id@g.us")
            text: Message text

        Returns:
            Bridge response with messageId
        """
        if not self._http_session:
            raise NotConnectedError()

        payload = {"chatId": jid, "message": text}

        async with self._http_session.post(f"{self.http_url}/send", json=payload) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def _restore_session(self) -> None:
        creds = self.credentials.load()
        async with self._http_session.post(
            f"{self.http_url}/session", json={"creds": creds}
        ) as resp:
            resp.raise_for_status()
        logger.debug(f"Session restore sent (stored credentials: {'yes' if creds else 'no'})")

    # =========================================================================
    # WEBSOCKET EVENTS
    # =========================================================================

    async def _listen(self) -> None:
        status_code: Optional[int] = None

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        logger.warning("Ignoring non-JSON frame from bridge")
                        continue

                    if not isinstance(data, dict):
                        logger.warning("Ignoring bridge frame that is not a JSON object")
                        continue

                    if data.get("type") in ("disconnected", "close"):
                        status_code = _status_code(data)
                        logger.warning(f"WhatsApp disconnected (status {status_code})")
                        break

                    await self._dispatch(data)

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {self._ws.exception()}")
                    break

        except (aiohttp.ClientError, ConnectionError) as e:
            logger.error(f"Error in WebSocket listener: {e}")
        except Exception as e:
            logger.exception(f"WebSocket listener failed: {e}")
        finally:
            await self._release()

            if not self._closing:
                await self.emit(EVENT_CLOSE, status_code)

    async def _dispatch(self, data: Dict[str, Any]) -> None:
        event_type = data.get("type")

        if event_type == "qr":
            logger.info("QR code received - scan with WhatsApp")
            await self.emit(EVENT_QR, data.get("qr", ""))

        elif event_type in ("ready", "open"):
            user = data.get("user")
            if not isinstance(user, dict):
                user = {}
            self.user = SocketUser(
                id=user.get("id", ""),
                name=user.get("name") or user.get("pushname"),
            )
            logger.info("WhatsApp is ready")
            await self.emit(EVENT_OPEN, self.user.id, self.user.name)

        elif event_type == "messages":
            batch_type = data.get("upsertType", BATCH_NOTIFY)
            raw = data.get("messages")
            if not isinstance(raw, list):
                logger.warning("Ignoring messages frame without a message list")
                return
            messages = [RawMessage.from_bridge(m) for m in raw if isinstance(m, dict)]
            await self.emit(EVENT_MESSAGES, batch_type, messages)

        elif event_type == "message":
            raw = data.get("message")
            if not isinstance(raw, dict):
                logger.warning("Ignoring message frame without a message object")
                return
            message = RawMessage.from_bridge(raw)
            await self.emit(EVENT_MESSAGES, BATCH_NOTIFY, [message])

        elif event_type == "creds":
            await self.emit(EVENT_CREDS_UPDATE, data.get("creds"))

        elif event_type == "ack":
            logger.debug(f"Message {data.get('messageId')} ack: {data.get('ack')}")

        else:
            logger.debug(f"Unknown WebSocket message type: {event_type}")

    async def _release(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
