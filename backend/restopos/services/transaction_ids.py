"""Payment transaction ids.

Format: ``TX`` followed by 10 characters from an alphabet without the easily
confused ``I``, ``O``, ``0`` and ``1``. Customers type the id into their bank
transfer description, and the bank webhook is matched back on it.
"""

import re
import secrets
from typing import Optional

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PREFIX = "TX"
ID_LENGTH = 10

_ID_PATTERN = re.compile(rf"{PREFIX}[{ALPHABET}]{{{ID_LENGTH}}}")


def generate_transaction_id() -> str:
    """Return a new random transaction id, e.g. ``TXAB3C4D5E6F``."""
    return PREFIX + "".join(secrets.choice(ALPHABET) for _ in range(ID_LENGTH))


def is_valid_transaction_id(value) -> bool:
    """True only for ``TX`` + 10 alphabet characters, nothing else."""
    if not isinstance(value, str) or len(value) != len(PREFIX) + ID_LENGTH:
        return False
    if not value.startswith(PREFIX):
        return False
    return all(char in ALPHABET for char in value[len(PREFIX):])


def extract_transaction_id(content: Optional[str]) -> Optional[str]:
    """Find the first well-formed transaction id inside free-form transfer content.

    The match is exact: a lower-cased id is not the id that was issued.
    """
    if not content:
        return None
    for match in _ID_PATTERN.finditer(content):
        candidate = match.group(0)
        if is_valid_transaction_id(candidate):
            return candidate
    return None
