"""
Gateway Lifecycle Controller

Owns the protocol socket and turns its events into status updates,
access-control decisions and replies.

Socket events:
    qr        -> awaiting_qr_scan, QR cached and printed
    open      -> connected, session identity recorded
    close     -> disconnected; retried after retry_delay unless logged out
    messages  -> dedupe -> access control / pairing -> commands or reply

Everything runs on one asyncio loop. Message batches are processed in
tracked tasks so a slow reply backend never holds up socket events.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..channels.whatsapp.credentials import CredentialStore
from ..channels.whatsapp.qr import print_qr, render_qr_ascii
from ..channels.whatsapp.socket import (
    BATCH_NOTIFY,
    EVENT_CLOSE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES,
    EVENT_OPEN,
    EVENT_QR,
    DisconnectReason,
    GatewaySocket,
    RawMessage,
)
from .errors import NotConnectedError
from .guard import DedupeGuard, ReplyThrottle, dedupe_key
from .jid import normalize_jid, number_from_jid, number_to_jid
from .messages import InboundMessage
from .owners import OwnerRegistry
from .status import ACTIVE_STATES, ConnectionState, StatusStore, format_status_text, stringify_error

logger = logging.getLogger(__name__)

Replier = Callable[[InboundMessage], Awaitable[str]]
SocketFactory = Callable[[CredentialStore], GatewaySocket]

DEFAULT_RETRY_DELAY = 2.0

LOGGED_OUT_ERROR = "Logged out. Run /init to re-authenticate."

PAIRED_TEXT = "\n".join([
    "✅ Paired successfully.",
    "You can now chat with your Codex from this WhatsApp account.",
    "Try: /status",
])

HELP_TEXT = "\n".join([
    "🟢 WhatsApp Codex Bridge",
    "",
    "Commands:",
    "- /status  Show connection + pairing status",
    "- /help    Show this help",
    "",
    "Chat:",
    "- Send any message to get a reply.",
])

STATUS_COMMANDS = ("/status", "status")
HELP_COMMANDS = ("/help", "help")


@dataclass(frozen=True)
class QrSnapshot:
    """The latest login QR code."""
    raw: str
    ascii: str
    at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"raw": self.raw, "ascii": self.ascii, "at": self.at}


class GatewayController:
    """
    Drives one WhatsApp session.

    The controller is the only writer of the StatusStore; HTTP and
    console surfaces read snapshots and call start() / send_text().
    """

    def __init__(
        self,
        config,
        status: StatusStore,
        owners: OwnerRegistry,
        replier: Replier,
        socket_factory: SocketFactory,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        dedupe: Optional[DedupeGuard] = None,
        throttle: Optional[ReplyThrottle] = None,
        qr_renderer: Callable[[str], str] = render_qr_ascii,
        qr_printer: Callable[[str], None] = print_qr,
    ):
        self.config = config
        self.status = status
        self.owners = owners
        self.retry_delay = retry_delay
        self.dedupe = dedupe if dedupe is not None else DedupeGuard()
        self.throttle = throttle if throttle is not None else ReplyThrottle()

        self.replier = replier
        self._socket_factory = socket_factory
        self._qr_renderer = qr_renderer
        self._qr_printer = qr_printer

        self._socket: Optional[GatewaySocket] = None
        self._qr: Optional[QrSnapshot] = None
        self._start_lock = asyncio.Lock()
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._shutting_down = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """
        Create and connect the protocol socket.

        A no-op when a socket already exists. If connecting fails the
        socket is dropped, the error recorded and the exception re-raised.
        """
        async with self._start_lock:
            if self._socket is not None:
                logger.info("WhatsApp socket already started")
                return

            if self._retry_handle is not None:
                self._retry_handle.cancel()
                self._retry_handle = None

            self._shutting_down = False
            self.status.set_state(ConnectionState.STARTING)

            credentials = CredentialStore(self.config.auth_state_dir)
            socket = self._socket_factory(credentials)
            self._socket = socket

            socket.on(EVENT_CREDS_UPDATE, credentials.save)
            socket.on(EVENT_QR, lambda code: self._on_qr(socket, code))
            socket.on(EVENT_OPEN, lambda user_jid=None, name=None: self._on_open(socket, user_jid, name))
            socket.on(EVENT_CLOSE, lambda status_code=None: self._on_close(socket, status_code))
            socket.on(EVENT_MESSAGES, lambda batch_type, messages: self._on_messages(socket, batch_type, messages))

            try:
                await socket.connect()
            except Exception as e:
                if self._socket is socket:
                    self._socket = None
                self.status.set_state(ConnectionState.DISCONNECTED)
                self.status.set_error(e)
                logger.error(f"Failed to start WhatsApp socket: {e}")
                raise

            logger.info("WhatsApp socket started")

    async def shutdown(self) -> None:
        """Cancel any pending retry, finish in-flight work and close the socket."""
        self._shutting_down = True

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        await self.wait_idle()

        socket = self._socket
        self._socket = None
        if socket is None:
            return

        try:
            await socket.close()
        except Exception as e:
            self.status.set_error(e)
            logger.error(f"Error closing WhatsApp socket: {e}")

        if self.status.get_snapshot().state in ACTIVE_STATES:
            self.status.set_state(ConnectionState.DISCONNECTED)
            self.status.mark_disconnected()

    async def wait_idle(self) -> None:
        """Wait for every in-flight message batch and retry to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def begin_consent(self) -> bool:
        """Enter awaiting_consent; only possible while nothing is running or retrying."""
        if self._socket is not None or self.retry_pending or self.status.get_snapshot().active:
            return False
        self.status.set_state(ConnectionState.AWAITING_CONSENT)
        return True

    def cancel_consent(self) -> None:
        if self.status.get_snapshot().state == ConnectionState.AWAITING_CONSENT:
            self.status.set_state(ConnectionState.IDLE)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def has_socket(self) -> bool:
        return self._socket is not None

    # =========================================================================
    # READS
    # =========================================================================

    def get_pairing_code(self) -> str:
        return self.owners.get_pairing_code()

    def get_qr(self) -> Optional[QrSnapshot]:
        return self._qr

    def get_jid(self) -> Optional[str]:
        return self.status.get_snapshot().jid

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def send_text(self, jid: str, text: str) -> Dict[str, Any]:
        """
        Send a text message.

        Accepts a JID or a phone number. Raises NotConnectedError when no
        socket is active and ValueError for an unusable recipient.
        """
        if self._socket is None:
            raise NotConnectedError()

        target = normalize_jid(jid) if "@" in (jid or "") else number_to_jid(jid)
        if not target:
            raise ValueError(f"Invalid recipient: {jid!r}")

        return await self._socket.send_text(target, text)

    # =========================================================================
    # SOCKET EVENTS
    # =========================================================================

    def _is_stale(self, socket: GatewaySocket) -> bool:
        return self._socket is not None and socket is not self._socket

    def _on_qr(self, socket: GatewaySocket, code: str) -> None:
        if self._is_stale(socket):
            return

        self.status.set_state(ConnectionState.AWAITING_QR_SCAN)
        self.status.mark_qr_seen()

        try:
            ascii_qr = self._qr_renderer(code)
        except Exception as e:
            logger.error(f"Failed to render QR code: {e}")
            ascii_qr = ""

        self._qr = QrSnapshot(raw=code, ascii=ascii_qr, at=datetime.now(timezone.utc).isoformat())

        logger.info("QR received. Scan to authenticate.")
        if ascii_qr:
            self._qr_printer(ascii_qr)

    def _on_open(self, socket: GatewaySocket, user_jid: Optional[str], name: Optional[str]) -> None:
        if self._is_stale(socket):
            return

        if not user_jid and socket.user is not None:
            user_jid, name = socket.user.id, name or socket.user.name

        self.status.set_state(ConnectionState.CONNECTED)
        self.status.mark_connected()

        jid = normalize_jid(user_jid)
        self.status.set_user(jid or None, number_from_jid(jid) if jid else None, name)
        logger.info(f"Connected as {jid or 'unknown'}")

        self.status.set_owners(self.owners.get_owner_jids())
        if not self.owners.is_paired():
            logger.warning(
                f"Owner not paired yet. Send: PAIR {self.owners.get_pairing_code()} from your phone."
            )

    def _on_close(self, socket: GatewaySocket, status_code: Optional[int]) -> None:
        if self._is_stale(socket):
            return

        self.status.set_state(ConnectionState.DISCONNECTED)
        self.status.mark_disconnected()

        logged_out = status_code == DisconnectReason.LOGGED_OUT
        logger.warning(f"Connection closed (status {status_code}, logged out: {logged_out})")

        self._socket = None

        if logged_out:
            self.status.set_state(ConnectionState.FAILED)
            self.status.set_error(LOGGED_OUT_ERROR)
            return

        self._schedule_retry()

    def _on_messages(self, socket: GatewaySocket, batch_type: str, messages: List[RawMessage]) -> None:
        if batch_type != BATCH_NOTIFY or self._is_stale(socket):
            return
        self._track(self._process_batch(list(messages)))

    # =========================================================================
    # RETRY
    # =========================================================================

    def _schedule_retry(self) -> None:
        if self._retry_handle is not None or self._shutting_down:
            return
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay, self._fire_retry)
        logger.info(f"Reconnecting in {self.retry_delay}s")

    def _fire_retry(self) -> None:
        self._retry_handle = None
        self._track(self._retry_start())

    async def _retry_start(self) -> None:
        try:
            await self.start()
        except Exception as e:
            self.status.set_error(e)
            logger.error(f"Reconnect failed: {e}")

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # INBOUND
    # =========================================================================

    async def _process_batch(self, messages: List[RawMessage]) -> None:
        for message in messages:
            try:
                await self._process_message(message)
            except Exception as e:
                self.status.set_error(e)
                logger.error(f"Failed to process inbound message: {e}")

    async def _process_message(self, message: RawMessage) -> None:
        if message.from_me or message.body is None:
            return

        jid = normalize_jid(message.remote_jid)
        if not jid or not message.id:
            return

        text = message.body.strip()
        if not text:
            return

        if not self.dedupe.mark_seen(dedupe_key(jid, message.id)):
            logger.debug(f"Dropping duplicate message {message.id} from {jid}")
            return

        if not self.owners.is_allowed(jid, self.config.whatsapp.allow_groups):
            if self.owners.try_pair(jid, text):
                self.status.set_owners(self.owners.get_owner_jids())
                await self.send_text(jid, PAIRED_TEXT)
            return

        inbound = InboundMessage(
            jid=jid,
            message_id=message.id,
            text=text[:self.config.whatsapp.max_inbound_chars],
            timestamp_ms=message.timestamp * 1000,
        )
        self.status.mark_message_seen()

        command = inbound.text.strip().lower()
        if command in STATUS_COMMANDS:
            await self.send_text(jid, format_status_text(self.status.get_snapshot()))
            return

        if command in HELP_COMMANDS:
            await self.send_text(jid, HELP_TEXT)
            return

        reply = await self._safe_reply(inbound)
        if reply:
            await self.send_text(jid, reply)

    async def _safe_reply(self, inbound: InboundMessage) -> Optional[str]:
        now = self.throttle.now()
        if not self.throttle.should_reply(inbound.jid, now):
            logger.debug(f"Throttled reply to {inbound.jid}")
            return None

        self.throttle.begin_reply(inbound.jid)
        try:
            try:
                reply = await self.replier(inbound)
            except Exception as e:
                self.status.set_error(e)
                logger.error(f"Reply backend failed: {e}")
                reply = f"❌ Failed to generate a reply: {stringify_error(e)}"

            self.throttle.record_reply(inbound.jid, now)
        finally:
            self.throttle.end_reply(inbound.jid)
        return reply
