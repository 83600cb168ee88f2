"""Seeded random streams derived from request ids"""

import hashlib
import random


def seeded_rng(request_id: str, purpose: str, round_index: int = 0) -> random.Random:
    """
    Independent, reproducible random stream for one draw site.

    The seed is sha256("<request_id>|<purpose>|<round>") so replays after a
    restore produce the same outcomes as the original run.
    """
    digest = hashlib.sha256(f"{request_id}|{purpose}|{round_index}".encode("utf-8")).digest()
    return random.Random(int.from_bytes(digest[:8], "big"))
