"""
Fast JSON encoding for structured log events.

Usage:
    from marketsync.core.json_utils import dumps

    log.info(dumps({"event": "cycle_complete", "items": 12}))
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import orjson


def _default(obj: Any) -> Any:
    # Decimal prices and sets of ids show up in log payloads
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return orjson.dumps(obj, default=_default).decode("utf-8")

