"""
Reply backends.

A replier is an async callable taking an InboundMessage and returning the
reply text. The gateway picks one at startup from reply.mode:

    echo     - "✅ Received: <text>"
    webhook  - POST the message as JSON, expect {"reply": str}
    codex    - run the codex CLI (see codex.py)
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..core.errors import ConfigError, ReplyError
from ..core.messages import InboundMessage
from .codex import CodexReplier

logger = logging.getLogger(__name__)

Replier = Callable[[InboundMessage], Awaitable[str]]

WEBHOOK_TIMEOUT_SECONDS = 25.0


async def echo_reply(message: InboundMessage) -> str:
    return f"✅ Received: {message.text}"


def _read_reply_field(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    reply = payload.get("reply")
    return reply if isinstance(reply, str) else None


class WebhookReplier:
    """
    Forwards each message to an HTTP endpoint.

    Request body (JSON):
        {"jid": str, "messageId": str, "text": str, "timestampMs": int}

    Expected response (JSON):
        {"reply": str}
    """

    def __init__(
        self,
        url: str,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not url:
            raise ConfigError("reply mode 'webhook' requires WEBHOOK_URL")

        self.url = url
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def __call__(self, message: InboundMessage) -> str:
        response = await self.client.post(self.url, json=message.to_dict())

        if response.is_error:
            raise ReplyError(
                f"Webhook error: {response.status_code} {response.reason_phrase} {response.text}".strip()
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        reply = _read_reply_field(payload)
        if reply is None:
            raise ReplyError("Webhook response must be JSON: { reply: string }")

        return reply

    async def close(self) -> None:
        await self.client.aclose()


def create_replier(config) -> Replier:
    """
    Build the replier selected by config.reply.mode.

    Raises:
        ConfigError: webhook mode without a URL
    """
    mode = config.reply.mode

    if mode == "webhook":
        logger.info(f"Reply mode: webhook ({config.reply.webhook_url})")
        return WebhookReplier(config.reply.webhook_url, timeout=config.reply.webhook_timeout_seconds)

    if mode == "codex":
        logger.info(f"Reply mode: codex ({config.codex.bin})")
        return CodexReplier(
            config.codex,
            auth_state_dir=config.auth_state_dir,
            max_reply_chars=config.reply.max_reply_chars,
        )

    logger.info("Reply mode: echo")
    return echo_reply
