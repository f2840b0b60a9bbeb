"""
Test WhatsApp Bridge Socket

Frame parsing and event dispatch, without a running bridge.
"""

import json
from types import SimpleNamespace

import aiohttp
import pytest

from wa_gateway.channels.whatsapp import BridgeSocket, CredentialStore, RawMessage
from wa_gateway.channels.whatsapp.socket import parse_timestamp
from wa_gateway.core.errors import NotConnectedError


class FakeWebSocket:
    """Async-iterable stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, frames):
        self._frames = [
            SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=f if isinstance(f, str) else json.dumps(f))
            for f in frames
        ]
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame

    async def close(self):
        self.closed = True


class TestRawMessage:
    """Tests for RawMessage.from_bridge"""

    def test_flat_shape(self):
        message = RawMessage.from_bridge({
            "id": "ABC",
            "from": "15551234567@s.whatsapp.net",
            "body": "hello",
            "timestamp": 1706745600,
            "fromMe": False,
            "pushName": "Ada",
        })
        assert message.id == "ABC"
        assert message.remote_jid == "15551234567@s.whatsapp.net"
        assert message.body == "hello"
        assert message.timestamp == 1706745600
        assert message.from_me is False
        assert message.push_name == "Ada"

    def test_keyed_shape(self):
        """Test the protocol-native key/message layout"""
        message = RawMessage.from_bridge({
            "key": {"id": "XYZ", "remoteJid": "15551234567@s.whatsapp.net", "fromMe": True},
            "message": {"extendedTextMessage": {"text": "quoted reply"}},
            "messageTimestamp": "1706745600",
        })
        assert message.id == "XYZ"
        assert message.from_me is True
        assert message.body == "quoted reply"
        assert message.timestamp == 1706745600

    def test_conversation_body(self):
        message = RawMessage.from_bridge({"key": {"id": "1"}, "message": {"conversation": "plain"}})
        assert message.body == "plain"

    def test_odd_nested_shapes(self):
        """Test non-object key/message fields do not break parsing"""
        message = RawMessage.from_bridge({"id": "1", "from": "a@s.whatsapp.net", "key": "k", "message": ["x"]})
        assert message.id == "1"
        assert message.remote_jid == "a@s.whatsapp.net"
        assert message.body is None

    def test_media_without_text(self):
        """Test non-text messages carry no body"""
        message = RawMessage.from_bridge({"key": {"id": "1"}, "message": {"imageMessage": {}}})
        assert message.body is None


class TestParseTimestamp:
    """Tests for parse_timestamp"""

    def test_values(self):
        assert parse_timestamp(1706745600) == 1706745600
        assert parse_timestamp(1706745600.7) == 1706745600
        assert parse_timestamp(" 42 ") == 42
        assert parse_timestamp({"low": 7, "high": 0}) == 7

    def test_unparseable(self):
        for value in (None, "soon", True, [], {"high": 1}):
            assert parse_timestamp(value) == 0


class TestBridgeSocket:
    """Tests for BridgeSocket dispatch"""

    def setup_method(self):
        self.events = []

    def make_socket(self, tmp_path):
        socket = BridgeSocket(CredentialStore(tmp_path))
        for event in ("qr", "open", "close", "messages", "creds.update"):
            socket.on(event, lambda *args, event=event: self.events.append((event, args)))
        return socket

    @pytest.mark.asyncio
    async def test_qr_frame(self, tmp_path):
        socket = self.make_socket(tmp_path)
        await socket._dispatch({"type": "qr", "qr": "2@abc"})
        assert self.events == [("qr", ("2@abc",))]

    @pytest.mark.asyncio
    async def test_ready_frame_sets_user(self, tmp_path):
        """Test ready carries the logged-in account"""
        socket = self.make_socket(tmp_path)
        await socket._dispatch({"type": "ready", "user": {"id": "15550001111:3@s.whatsapp.net", "name": "Bot"}})

        assert socket.user.id == "15550001111:3@s.whatsapp.net"
        assert socket.user.name == "Bot"
        assert self.events == [("open", ("15550001111:3@s.whatsapp.net", "Bot"))]

    @pytest.mark.asyncio
    async def test_messages_frame(self, tmp_path):
        """Test batches keep their upsert type"""
        socket = self.make_socket(tmp_path)
        await socket._dispatch({
            "type": "messages",
            "upsertType": "append",
            "messages": [{"id": "1", "from": "a@s.whatsapp.net", "body": "old"}],
        })

        event, (batch_type, messages) = self.events[0]
        assert event == "messages"
        assert batch_type == "append"
        assert messages[0].body == "old"

    @pytest.mark.asyncio
    async def test_single_message_frame_is_notify(self, tmp_path):
        socket = self.make_socket(tmp_path)
        await socket._dispatch({"type": "message", "message": {"id": "1", "from": "a@s.whatsapp.net", "body": "hi"}})

        event, (batch_type, messages) = self.events[0]
        assert batch_type == "notify"
        assert [m.id for m in messages] == ["1"]

    @pytest.mark.asyncio
    async def test_creds_frame(self, tmp_path):
        socket = self.make_socket(tmp_path)
        await socket._dispatch({"type": "creds", "creds": {"me": {"id": "x"}}})
        assert self.events == [("creds.update", ({"me": {"id": "x"}},))]

    @pytest.mark.asyncio
    async def test_unknown_frame_ignored(self, tmp_path):
        socket = self.make_socket(tmp_path)
        await socket._dispatch({"type": "presence"})
        assert self.events == []

    @pytest.mark.asyncio
    async def test_disconnect_frame_emits_close(self, tmp_path):
        """Test a disconnected frame ends the listener with close(status)"""
        socket = self.make_socket(tmp_path)
        ws = FakeWebSocket([
            {"type": "qr", "qr": "2@abc"},
            "not json",
            {"type": "disconnected", "statusCode": 401},
            {"type": "qr", "qr": "never"},
        ])
        socket._ws = ws

        await socket._listen()

        assert self.events == [("qr", ("2@abc",)), ("close", (401,))]
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_malformed_frames_are_skipped(self, tmp_path):
        """Test badly shaped frames are dropped and the listener keeps going"""
        socket = self.make_socket(tmp_path)
        socket._ws = FakeWebSocket([
            {"type": "messages", "messages": None},
            {"type": "message", "message": "hello"},
            {"type": "ready", "user": "someone"},
            ["not", "an", "object"],
            {"type": "messages", "messages": ["junk", {"id": "1", "from": "a@s.whatsapp.net", "body": "ok"}]},
            {"type": "qr", "qr": "x"},
        ])

        await socket._listen()

        events = [event for event, _ in self.events]
        assert events == ["open", "messages", "qr", "close"]
        _, (batch_type, messages) = self.events[1]
        assert [m.body for m in messages] == ["ok"]
        assert self.events[-1] == ("close", (None,))

    @pytest.mark.asyncio
    async def test_listener_failure_still_emits_close(self, tmp_path):
        """Test an unexpected dispatch error releases the socket and reports close"""
        socket = self.make_socket(tmp_path)
        ws = FakeWebSocket([{"type": "qr", "qr": "x"}])
        socket._ws = ws

        async def explode(data):
            raise RuntimeError("bad frame")

        socket._dispatch = explode

        await socket._listen()

        assert self.events == [("close", (None,))]
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_stream_end_without_code(self, tmp_path):
        socket = self.make_socket(tmp_path)
        socket._ws = FakeWebSocket([])

        await socket._listen()

        assert self.events == [("close", (None,))]

    @pytest.mark.asyncio
    async def test_owner_close_is_silent(self, tmp_path):
        """Test close() does not emit a close event"""
        socket = self.make_socket(tmp_path)
        socket._ws = FakeWebSocket([])

        await socket.close()
        assert self.events == []

    @pytest.mark.asyncio
    async def test_send_without_session(self, tmp_path):
        socket = self.make_socket(tmp_path)
        with pytest.raises(NotConnectedError):
            await socket.send_text("a@s.whatsapp.net", "hi")


class TestCredentialStore:
    """Tests for CredentialStore"""

    def test_missing_file(self, tmp_path):
        assert CredentialStore(tmp_path / "auth").load() is None

    def test_save_and_load(self, tmp_path):
        store = CredentialStore(tmp_path / "auth")
        store.save({"me": {"id": "15550001111@s.whatsapp.net"}})
        assert store.load() == {"me": {"id": "15550001111@s.whatsapp.net"}}
