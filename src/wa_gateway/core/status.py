"""
Gateway Status Model

Holds the single source of truth for connection and session state.
Every update builds a new immutable StatusSnapshot from the previous one
and swaps it in; readers always get a complete snapshot.

Connection states:
    idle -> starting -> awaiting_qr_scan -> connected
    connected -> disconnected           (transport loss)
    disconnected -> starting            (auto-retry)
    disconnected -> failed              (logged out, terminal)
    awaiting_consent                    (console waiting for risk acceptance)
"""

import json
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

PUBLIC_STATUS_VERSION = 1


class ConnectionState(str, Enum):
    """Lifecycle state of the WhatsApp connection"""
    IDLE = "idle"
    AWAITING_CONSENT = "awaiting_consent"
    STARTING = "starting"
    AWAITING_QR_SCAN = "awaiting_qr_scan"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


ACTIVE_STATES = frozenset({
    ConnectionState.STARTING,
    ConnectionState.AWAITING_QR_SCAN,
    ConnectionState.CONNECTED,
})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def stringify_error(err: Any) -> str:
    """Render an exception or arbitrary value as a one-line error string."""
    if isinstance(err, BaseException):
        return str(err) or err.__class__.__name__
    if isinstance(err, str):
        return err
    try:
        return json.dumps(err)
    except (TypeError, ValueError):
        return str(err)


def connection_label(state: ConnectionState) -> str:
    """Collapse the internal state into connected / connecting / disconnected."""
    if state == ConnectionState.CONNECTED:
        return "connected"
    if state in (ConnectionState.STARTING, ConnectionState.AWAITING_QR_SCAN):
        return "connecting"
    return "disconnected"


@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable view of the gateway state at one point in time."""
    state: ConnectionState = ConnectionState.IDLE
    owner_jids: FrozenSet[str] = field(default_factory=frozenset)
    jid: Optional[str] = None
    number: Optional[str] = None
    push_name: Optional[str] = None
    last_qr_at: Optional[str] = None
    last_connect_at: Optional[str] = None
    last_disconnect_at: Optional[str] = None
    last_message_at: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def paired(self) -> bool:
        return len(self.owner_jids) > 0

    @property
    def connection(self) -> str:
        return connection_label(self.state)

    def to_dict(self) -> Dict[str, Any]:
        """Internal representation (all fields, including unset ones)."""
        return {
            "state": self.state.value,
            "active": self.active,
            "paired": self.paired,
            "owner_jids": sorted(self.owner_jids),
            "jid": self.jid,
            "number": self.number,
            "push_name": self.push_name,
            "last_qr_at": self.last_qr_at,
            "last_connect_at": self.last_connect_at,
            "last_disconnect_at": self.last_disconnect_at,
            "last_message_at": self.last_message_at,
            "last_error": self.last_error,
        }


class StatusStore:
    """
    Owner of the current StatusSnapshot.

    Only the GatewayController mutates the store; HTTP and console read
    snapshots or the public projection.
    """

    def __init__(self, initial: Optional[StatusSnapshot] = None):
        self._snapshot = initial or StatusSnapshot()
        self._lock = threading.Lock()

    def _update(self, **changes: Any) -> StatusSnapshot:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            return self._snapshot

    def get_snapshot(self) -> StatusSnapshot:
        with self._lock:
            return self._snapshot

    def set_state(self, state: ConnectionState) -> None:
        self._update(state=ConnectionState(state))

    def set_user(
        self,
        jid: Optional[str],
        number: Optional[str],
        push_name: Optional[str],
    ) -> None:
        self._update(jid=jid or None, number=number or None, push_name=push_name or None)

    def set_owners(self, owner_jids: Iterable[str]) -> None:
        self._update(owner_jids=frozenset(owner_jids))

    def mark_qr_seen(self) -> None:
        self._update(last_qr_at=_now_iso())

    def mark_connected(self) -> None:
        self._update(last_connect_at=_now_iso())

    def mark_disconnected(self) -> None:
        self._update(last_disconnect_at=_now_iso())

    def mark_message_seen(self) -> None:
        self._update(last_message_at=_now_iso())

    def set_error(self, err: Any) -> None:
        self._update(last_error=stringify_error(err))

    def to_public_status(self) -> Dict[str, Any]:
        """
        Public, versioned projection of the status.

        Optional fields are left out entirely when unset; clients rely on
        key presence, not on null values.
        """
        s = self.get_snapshot()

        out: Dict[str, Any] = {
            "schema_version": PUBLIC_STATUS_VERSION,
            "connection": s.connection,
            "active": s.active,
            "paired": s.paired,
            "owner_jids": sorted(s.owner_jids),
        }

        optional = {
            "jid": s.jid,
            "number": s.number,
            "push_name": s.push_name,
            "last_qr_at": s.last_qr_at,
            "last_connect_at": s.last_connect_at,
            "last_disconnect_at": s.last_disconnect_at,
            "last_message_at": s.last_message_at,
            "last_error": s.last_error,
        }
        out.update({key: value for key, value in optional.items() if value})

        return out


def format_status_text(snapshot: StatusSnapshot) -> str:
    """Human-readable status block for chat replies and the console."""
    lines: List[str] = ["📟 Status"]
    lines.append(f"connection: {snapshot.connection}")
    lines.append(f"active: {'yes' if snapshot.active else 'no'}")
    lines.append(f"paired: {'yes' if snapshot.paired else 'no'}")
    if snapshot.number:
        lines.append(f"number: {snapshot.number}")
    if snapshot.jid:
        lines.append(f"jid: {snapshot.jid}")
    if snapshot.push_name:
        lines.append(f"push name: {snapshot.push_name}")
    if snapshot.last_message_at:
        lines.append(f"last_message_at: {snapshot.last_message_at}")
    if snapshot.last_qr_at:
        lines.append(f"last_qr_at: {snapshot.last_qr_at}")
    if snapshot.last_error:
        lines.append(f"last_error: {snapshot.last_error}")
    if snapshot.owner_jids:
        lines.append(f"owner jids: {', '.join(sorted(snapshot.owner_jids))}")
    return "\n".join(lines)
