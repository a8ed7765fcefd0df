"""Client-side identifier generation."""
from __future__ import annotations

import random
import string
import time

_ALPHABET = string.ascii_lowercase + string.digits


def new_identifier(prefix: str) -> str:
    """Return ``<prefix>_<epoch millis>_<5 random chars>``."""

    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_ALPHABET, k=5))
    return f"{prefix}_{millis}_{suffix}"


__all__ = ["new_identifier"]
