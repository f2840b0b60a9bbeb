"""
Inbound dedupe and outbound reply throttle.

Both caches live in memory for the lifetime of the process. Expired
dedupe entries are swept on access; there is no background timer.
"""

import time
from typing import Callable, Dict, Optional, Set

DEDUPE_TTL_SECONDS = 5 * 60
REPLY_MIN_INTERVAL_SECONDS = 1.2

Clock = Callable[[], float]


def dedupe_key(jid: str, message_id: str) -> str:
    return f"{jid}|{message_id}"


class DedupeGuard:
    """At-most-once processing of a message id within the TTL window."""

    def __init__(self, ttl: float = DEDUPE_TTL_SECONDS, clock: Clock = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._expiry: Dict[str, float] = {}

    def mark_seen(self, key: str) -> bool:
        """
        Record a key.

        Returns True the first time a key is seen (process it), False while
        the key is still inside its TTL (drop it).
        """
        now = self._clock()

        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            del self._expiry[k]

        if key in self._expiry:
            return False

        self._expiry[key] = now + self.ttl
        return True

    def __len__(self) -> int:
        return len(self._expiry)


class ReplyThrottle:
    """
    Minimum spacing between replies to the same JID.

    Damps reply loops (two bridges answering each other) without slowing
    a normal conversation down. A JID with a reply still being generated is also
    refused, so slow replies cannot overlap.
    """

    def __init__(
        self,
        min_interval: float = REPLY_MIN_INTERVAL_SECONDS,
        clock: Clock = time.monotonic,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._last_reply: Dict[str, float] = {}
        self._pending: Set[str] = set()

    def now(self) -> float:
        return self._clock()

    def should_reply(self, jid: str, now: Optional[float] = None) -> bool:
        if jid in self._pending:
            return False
        now = self._clock() if now is None else now
        last = self._last_reply.get(jid)
        if last is None:
            return True
        return now - last >= self.min_interval

    def record_reply(self, jid: str, now: Optional[float] = None) -> None:
        self._last_reply[jid] = self._clock() if now is None else now

    def begin_reply(self, jid: str) -> None:
        """Mark a reply to jid as in flight until end_reply()."""
        self._pending.add(jid)

    def end_reply(self, jid: str) -> None:
        self._pending.discard(jid)
