"""
Owner Registry

Decides which WhatsApp identities may converse with the gateway and runs
the one-time pairing handshake.

Pairing:
    1. The gateway starts with no owners and a random 8-digit code.
    2. The operator reads the code from the console or logs.
    3. From their phone, they send "PAIR <code>" to the gateway number.
    4. The sender becomes the owner, the owner set is saved to
       <auth_state_dir>/owner.json and the code is rotated.

Owners listed in configuration (numbers or JIDs) take precedence: when
any are configured, the on-disk state is not loaded.
"""

import json
import logging
import re
import secrets
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

from .jid import is_group_jid, normalize_jid, number_to_jid
from .storage import write_json_atomic

logger = logging.getLogger(__name__)

OWNER_STATE_FILE = "owner.json"

PAIR_COMMAND_PATTERN = re.compile(r"^/?pair\s+([0-9]{6,12})$", re.IGNORECASE)

PAIR_CODE_MIN = 10_000_000
PAIR_CODE_MAX = 99_999_999


def generate_pairing_code() -> str:
    """Uniformly random 8-digit pairing code."""
    return str(PAIR_CODE_MIN + secrets.randbelow(PAIR_CODE_MAX - PAIR_CODE_MIN))


def parse_pair_command(text: str) -> Optional[str]:
    """Return the code from a "PAIR <code>" message, or None."""
    match = PAIR_COMMAND_PATTERN.match((text or "").strip())
    return match.group(1) if match else None


class OwnerRegistry:
    """Allow-list of owner JIDs plus the active pairing code."""

    def __init__(
        self,
        auth_state_dir: Union[str, Path],
        owner_numbers: Iterable[str] = (),
        owner_jids: Iterable[str] = (),
        pairing_code: Optional[str] = None,
    ):
        self.state_file = Path(auth_state_dir) / OWNER_STATE_FILE
        self._owner_jids: Set[str] = set()

        if pairing_code and parse_pair_command(f"pair {pairing_code}"):
            self._pairing_code = pairing_code.strip()
        else:
            if pairing_code:
                logger.warning("Ignoring configured pairing code: expected 6-12 digits")
            self._pairing_code = generate_pairing_code()

        for number in owner_numbers:
            jid = number_to_jid(number)
            if jid:
                self._owner_jids.add(jid)

        for raw in owner_jids:
            jid = normalize_jid(raw)
            if jid:
                self._owner_jids.add(jid)

        self._configured = bool(self._owner_jids)

    def load_from_disk(self) -> None:
        """
        Load persisted owners, unless owners came from configuration.

        A missing or malformed file means "no owners yet".
        """
        if self._configured:
            logger.info(f"Using {len(self._owner_jids)} configured owner(s); skipping {self.state_file}")
            return

        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug(f"No owner state at {self.state_file}")
            return
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable owner state {self.state_file}: {e}")
            return

        stored = data.get("ownerJids") if isinstance(data, dict) else None
        if not isinstance(stored, list):
            logger.warning(f"Ignoring owner state with unexpected shape: {self.state_file}")
            return

        for raw in stored:
            if isinstance(raw, str) and raw.strip():
                jid = normalize_jid(raw)
                if jid:
                    self._owner_jids.add(jid)

        logger.info(f"Loaded {len(self._owner_jids)} owner(s) from {self.state_file}")

    def is_paired(self) -> bool:
        return len(self._owner_jids) > 0

    def get_owner_jids(self) -> List[str]:
        return sorted(self._owner_jids)

    def get_pairing_code(self) -> str:
        return self._pairing_code

    def is_allowed(self, jid: str, allow_groups: bool) -> bool:
        """
        Check whether a JID may use the gateway.

        Groups need allow_groups AND an explicit owner entry; they can
        never pair themselves.
        """
        normalized = normalize_jid(jid)
        if not normalized:
            return False

        if is_group_jid(normalized):
            return allow_groups and normalized in self._owner_jids

        return normalized in self._owner_jids

    def try_pair(self, jid: str, text: str) -> bool:
        """
        Attempt the pairing handshake.

        Returns True only on success. A wrong code, a malformed command or
        an already-paired gateway all return False without side effects.
        """
        if self.is_paired():
            return False

        normalized = normalize_jid(jid)
        if not normalized or is_group_jid(normalized):
            return False

        code = parse_pair_command(text)
        if code is None or not secrets.compare_digest(code, self._pairing_code):
            return False

        owners = self._owner_jids | {normalized}
        self._save(owners)
        self._owner_jids = owners

        previous = self._pairing_code
        while self._pairing_code == previous:
            self._pairing_code = generate_pairing_code()

        logger.info(f"Paired owner {normalized}")
        return True

    def _save(self, owners: Set[str]) -> None:
        write_json_atomic(self.state_file, {"ownerJids": sorted(owners)})
