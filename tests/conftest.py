"""
Shared test fixtures: fake protocol socket, fake clock, controller builder.
"""

from pathlib import Path
from typing import List, Optional

import pytest

from wa_gateway.channels.whatsapp.socket import GatewaySocket, RawMessage
from wa_gateway.config import GatewayConfig
from wa_gateway.core.gateway import GatewayController
from wa_gateway.core.guard import DedupeGuard, ReplyThrottle
from wa_gateway.core.owners import OwnerRegistry
from wa_gateway.core.status import StatusStore


class FakeSocket(GatewaySocket):
    """In-memory GatewaySocket; tests drive it with emit()."""

    def __init__(self, credentials=None, connect_error: Optional[Exception] = None):
        super().__init__()
        self.credentials = credentials
        self.connect_error = connect_error
        self.connected = False
        self.closed = False
        self.sent: List[tuple] = []

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def send_text(self, jid: str, text: str):
        self.sent.append((jid, text))
        return {"success": True, "messageId": f"out-{len(self.sent)}"}

    async def close(self) -> None:
        self.closed = True


class FakeSocketFactory:
    """Socket factory recording every socket it builds."""

    def __init__(self):
        self.sockets: List[FakeSocket] = []
        self.connect_errors: List[Exception] = []

    def __call__(self, credentials) -> FakeSocket:
        error = self.connect_errors.pop(0) if self.connect_errors else None
        socket = FakeSocket(credentials, connect_error=error)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_message(
    text: Optional[str],
    jid: str = "15551234567@s.whatsapp.net",
    message_id: str = "m1",
    from_me: bool = False,
    timestamp: int = 1706745600,
) -> RawMessage:
    return RawMessage(
        id=message_id,
        remote_jid=jid,
        body=text,
        timestamp=timestamp,
        from_me=from_me,
    )


class ControllerHarness:
    """A GatewayController wired to fakes, with handles on every collaborator."""

    def __init__(self, tmp_path: Path, replier=None, owner_jids=(), pairing_code="12345678",
                 allow_groups=False, max_inbound_chars=4000, retry_delay=0.01):
        self.config = GatewayConfig(working_dir=tmp_path)
        self.config.whatsapp.allow_groups = allow_groups
        self.config.whatsapp.max_inbound_chars = max_inbound_chars

        self.clock = FakeClock()
        self.status = StatusStore()
        self.owners = OwnerRegistry(
            self.config.auth_state_dir,
            owner_jids=owner_jids,
            pairing_code=pairing_code,
        )
        self.status.set_owners(self.owners.get_owner_jids())
        self.factory = FakeSocketFactory()
        self.replies: List = []
        self.printed: List[str] = []

        async def echo(message):
            self.replies.append(message)
            return f"✅ Received: {message.text}"

        self.controller = GatewayController(
            self.config,
            self.status,
            self.owners,
            replier or echo,
            self.factory,
            retry_delay=retry_delay,
            dedupe=DedupeGuard(clock=self.clock),
            throttle=ReplyThrottle(clock=self.clock),
            qr_renderer=lambda data: f"[qr:{data}]",
            qr_printer=self.printed.append,
        )

    @property
    def socket(self) -> FakeSocket:
        return self.factory.last

    async def deliver(self, *messages: RawMessage, batch_type: str = "notify") -> None:
        await self.socket.emit("messages", batch_type, list(messages))
        await self.controller.wait_idle()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def harness(tmp_path):
    return ControllerHarness(tmp_path)


@pytest.fixture
def owner_harness(tmp_path):
    return ControllerHarness(tmp_path, owner_jids=["15551234567@s.whatsapp.net"])
