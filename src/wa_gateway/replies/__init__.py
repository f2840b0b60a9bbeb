"""
Reply backends (echo, webhook, codex).
"""

from .codex import CodexReplier
from .replier import Replier, WebhookReplier, create_replier, echo_reply

__all__ = [
    "Replier",
    "CodexReplier",
    "WebhookReplier",
    "create_replier",
    "echo_reply",
]
