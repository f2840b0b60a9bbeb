"""
WhatsApp identity (JID) helpers.

A JID has the form ``user[:device|_agent]@server``. Two textual forms of
the same identity must compare equal, so everything that stores or
compares JIDs goes through normalize_jid() first.

    18625206066:12@s.whatsapp.net  ->  18625206066@s.whatsapp.net
    18625206066@c.us               ->  18625206066@s.whatsapp.net
    120363123456789@g.us           ->  120363123456789@g.us
"""

import re
from typing import Optional

USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"
GROUP_SERVER = "g.us"

_NON_DIGITS = re.compile(r"\D")


def normalize_jid(jid: Optional[str]) -> str:
    """
    Return the canonical form of a JID, or "" if it cannot be parsed.

    Device and agent suffixes are dropped and the legacy ``c.us`` server
    is mapped to ``s.whatsapp.net``.
    """
    if not jid:
        return ""

    jid = jid.strip()
    if "@" not in jid:
        return ""

    user_part, server = jid.split("@", 1)
    user = user_part.split(":", 1)[0].split("_", 1)[0]
    server = server.strip().lower()

    if not server:
        return ""
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER

    return f"{user}@{server}"


def is_group_jid(jid: Optional[str]) -> bool:
    """Check whether a JID addresses a group chat."""
    return bool(jid) and jid.strip().lower().endswith(f"@{GROUP_SERVER}")


def number_to_jid(number: Optional[str]) -> Optional[str]:
    """
    Convert a phone number in any formatting to a user JID.

    Returns None when the input holds no digits.
    """
    digits = _NON_DIGITS.sub("", number or "")
    if not digits:
        return None
    return normalize_jid(f"{digits}@{USER_SERVER}")


def number_from_jid(jid: str) -> str:
    """Extract a display number (``+<digits>``) from a JID, or return the JID."""
    before_at = jid.split("@", 1)[0]
    without_device = before_at.split(":", 1)[0] or before_at
    digits = _NON_DIGITS.sub("", without_device)
    return f"+{digits}" if digits else jid
