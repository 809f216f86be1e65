"""
Fast JSON utilities backed by orjson.

Usage:
    from pongbot.core.json_utils import dumps, loads

    log.info(dumps({"event": "pong_sent", "tx": tx_hash}))
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps(obj: Any) -> str:
    """Compact JSON encode to string."""
    return orjson.dumps(obj).decode("utf-8")


def dumps_bytes(obj: Any, indent: bool = False) -> bytes:
    """JSON encode to bytes; ``indent`` gives the 2-space human-readable form."""
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(obj, option=option)


def loads(s: str | bytes) -> Any:
    """JSON decode."""
    return orjson.loads(s)
