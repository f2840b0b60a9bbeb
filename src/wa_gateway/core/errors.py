"""
Gateway exceptions.
"""


class GatewayError(Exception):
    """Base class for gateway errors."""


class NotConnectedError(GatewayError, ConnectionError):
    """Raised when an outbound send is attempted without an active socket."""

    def __init__(self, message: str = "Not connected. Run /init and scan the QR first."):
        super().__init__(message)


class InsecureBindError(GatewayError):
    """Raised at startup when HTTP would listen publicly without an admin token."""


class ConfigError(GatewayError, ValueError):
    """Raised for configuration that cannot be used."""


class ReplyError(GatewayError):
    """Raised by a reply backend that could not produce a reply."""
