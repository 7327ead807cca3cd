"""Sortable event identifiers.

Identifiers use the ULID text layout: 10 characters of millisecond timestamp
followed by 16 characters of randomness, both Crockford base32. Within one
process identifiers are strictly increasing: when the clock has not advanced the
random part of the previous identifier is incremented instead of redrawn.
"""

from __future__ import annotations

import os
import threading
import time

_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80
_RANDOM_MAX = (1 << _RANDOM_BITS) - 1

_lock = threading.Lock()
_last_ms = -1
_last_random = 0


def _encode(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def new_id(now_ms: int | None = None) -> str:
    """Return a new identifier greater than any previously returned one."""
    global _last_ms, _last_random

    ms = int(time.time() * 1000) if now_ms is None else now_ms
    with _lock:
        if ms <= _last_ms:
            ms = _last_ms
            random_part = _last_random + 1
            if random_part > _RANDOM_MAX:
                # 2^80 ids in one millisecond; borrow the next millisecond
                ms += 1
                random_part = int.from_bytes(os.urandom(10), "big")
        else:
            random_part = int.from_bytes(os.urandom(10), "big")
        _last_ms = ms
        _last_random = random_part

    return _encode(ms, 10) + _encode(random_part, 16)


def id_timestamp_ms(value: str) -> int:
    """Return the millisecond timestamp encoded in an identifier."""
    result = 0
    for char in value[:10].upper():
        index = _ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid identifier: {value!r}")
        result = (result << 5) | index
    return result
