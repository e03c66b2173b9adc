# src/vetwatch/core/ids.py

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("base36 expects a non-negative integer")
    if n == 0:
        return "0"
    out: list[str] = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_id(suffix_len: int = 11) -> str:
    """
    Timestamp-prefixed id: base36(milliseconds) + random base36 suffix.

    Probabilistically unique only; ids sort roughly by creation time.
    """
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(max(1, suffix_len)))
    return to_base36(millis) + suffix


def utc_now() -> datetime:
    return datetime.now(UTC)
