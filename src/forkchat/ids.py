"""Id generation for chats, branches and messages.

Ids are random hex strings. Each collection keeps the set of ids it has
already handed out so collisions are retried rather than trusted to
probability alone.
"""

import random
from typing import Set


ID_MIN_DIGITS = 12
ID_MAX_ATTEMPTS = 3


def generate_id(existing_ids: Set[str], min_digits: int = ID_MIN_DIGITS) -> str:
    """Generate unique hex ID.

    Args:
        existing_ids: Set of already used IDs (will be modified)
        min_digits: Minimum number of hex digits (default: ID_MIN_DIGITS)

    Returns:
        Unique hex ID string (e.g., "3fa85f6457b2")

    The function tries to generate an ID with min_digits length.
    If all attempts fail (collisions), it increases the digit count
    and tries again.
    """
    digits = min_digits

    while True:
        for _ in range(ID_MAX_ATTEMPTS):
            new_id = format(random.getrandbits(4 * digits), f"0{digits}x")
            if new_id not in existing_ids:
                existing_ids.add(new_id)
                return new_id

        # All attempts failed, increase digits
        digits += 1


def is_id(value: str, min_digits: int = ID_MIN_DIGITS) -> bool:
    """Check if a string looks like a generated ID."""
    if not value or len(value) < min_digits:
        return False

    if any(c.isspace() for c in value):
        return False

    try:
        int(value, 16)
        return True
    except ValueError:
        return False
