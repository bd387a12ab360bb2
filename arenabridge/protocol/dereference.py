"""Decoder for the reference-linked, line-oriented payloads of server actions.

Wire format: ``{id}:{payload}\\n`` per record. Payloads starting with ``{``,
``[`` or ``"`` are JSON; anything else is a client-side instruction and is
ignored. Strings of the form ``$@<id>`` inside JSON values refer to the value
of another record. The result is the fully resolved value of record ``0``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from arenabridge.core.errors import DereferenceError, RootMissingError

logger = logging.getLogger(__name__)

ROOT_ID = "0"
REFERENCE_PATTERN = re.compile(r"\$@(\d+)")
_JSON_STARTS = ("{", "[", '"')


def parse_records(text: str) -> dict[str, Any]:
    """Parse the data records of a payload into an ``id -> value`` mapping."""
    records: dict[str, Any] = {}
    for line in text.strip().split("\n"):
        line = line.strip()
        if not line:
            continue

        record_id, sep, payload = line.partition(":")
        if not sep:
            logger.warning(f"Skipping malformed line (no colon): {line[:200]}")
            continue

        if not payload.startswith(_JSON_STARTS):
            continue

        try:
            records[record_id] = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DereferenceError(
                f'Failed to parse JSON for ID "{record_id}": {e.msg} | Content: {payload}',
                original=e,
            ) from e
    return records


def _resolve(value: Any, records: dict[str, Any]) -> Any:
    if isinstance(value, str):
        match = REFERENCE_PATTERN.fullmatch(value)
        if match:
            ref_id = match.group(1)
            if ref_id not in records:
                # Points at a skipped instruction line
                return None
            return _resolve(records[ref_id], records)
        return value
    if isinstance(value, list):
        return [_resolve(item, records) for item in value]
    if isinstance(value, dict):
        return {key: _resolve(item, records) for key, item in value.items()}
    return value


def parse_and_dereference(text: str) -> Any:
    """
    Decode a multi-record payload into one hydrated value.

    Args:
        text: The raw response body.

    Returns:
        The resolved value of record ``0``.

    Raises:
        DereferenceError: If a JSON record is malformed.
        RootMissingError: If there is no record ``0``.
    """
    records = parse_records(text or "")
    if ROOT_ID not in records:
        raise RootMissingError()
    return _resolve(records[ROOT_ID], records)
