"""
Inbound message handed to reply backends.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class InboundMessage:
    """A text message from an authorized sender, already trimmed and truncated."""
    jid: str
    message_id: str
    text: str
    timestamp_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Webhook payload (camelCase keys)."""
        return {
            "jid": self.jid,
            "messageId": self.message_id,
            "text": self.text,
            "timestampMs": self.timestamp_ms,
        }
