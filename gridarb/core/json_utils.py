"""
JSON utilities built on orjson.

Decimals are written as strings so persisted prices and values load back
exactly. Use `dumps` for compact log payloads and `dumps_pretty` for state
files that humans read.

Usage:
    from gridarb.core.json_utils import dumps, loads

    log.info(dumps({"event": "fill", "px": Decimal("10.30")}))
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

import orjson


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Compact JSON encode to string."""
    return orjson.dumps(obj, default=_default).decode("utf-8")


def dumps_pretty(obj: Any) -> bytes:
    """Indented JSON encode to bytes, with trailing newline."""
    return orjson.dumps(obj, default=_default, option=orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE)


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)
