"""
File-backed credential store for the protocol bridge.

The bridge emits a credentials snapshot whenever its session keys change;
the gateway keeps the latest one in <auth_state_dir>/creds.json and hands
it back when a new socket is created, so a restart does not require a new
QR scan.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ...core.storage import write_json_atomic

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"


class CredentialStore:
    """Persisted bridge credentials."""

    def __init__(self, auth_state_dir: Union[str, Path]):
        self.auth_state_dir = Path(auth_state_dir)
        self.path = self.auth_state_dir / CREDS_FILE

    def load(self) -> Optional[Dict[str, Any]]:
        """Return stored credentials, or None if absent or unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credentials {self.path}: {e}")
            return None

        return data if isinstance(data, dict) else None

    def save(self, creds: Dict[str, Any]) -> None:
        """Replace the stored credentials."""
        if not isinstance(creds, dict):
            logger.warning("Ignoring credentials update that is not a JSON object")
            return
        write_json_atomic(self.path, creds)
        logger.debug(f"Saved credentials to {self.path}")
