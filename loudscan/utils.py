"""
loudscan Utilities - Shared helper functions.

Responsibilities:
- Time formatting (UTC, ISO-8601)
- JSON serialization helpers

Invariants:
- All timestamps use ISO-8601 format with an explicit offset
"""

import json
from datetime import datetime, timezone
from typing import Any, Mapping


def now_iso() -> str:
    """
    Return current time as ISO-8601 in UTC.

    Returns:
        ISO-8601 formatted string, e.g., "2026-10-19T17:02:10.123456+00:00"
    """
    return datetime.now(timezone.utc).isoformat()


def serialize_json(data: Mapping[str, Any]) -> str:
    """
    Serialize dictionary to JSON deterministically.

    Args:
        data: Dictionary to serialize.

    Returns:
        JSON string with sorted keys, 2-space indent, trailing newline.
    """
    return json.dumps(data, indent=2, sort_keys=True) + "\n"
