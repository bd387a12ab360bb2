"""Identifier helpers.

The remote service only accepts UUID version 7 identifiers for sessions and
messages (time-ordered, RFC 9562 layout).
"""

from __future__ import annotations

import os
import time
import uuid

from uuid6 import uuid7 as _uuid7


def uuid7() -> uuid.UUID:
    """Generate a time-ordered UUIDv7."""
    return _uuid7()


def new_id() -> str:
    return str(uuid7())


def request_token() -> str:
    """Unique token for one bridged request."""
    return f"stream-{time.time_ns() // 1_000_000}-{os.urandom(4).hex()}"
