"""
Default snapshot renderer.

Turns aggregated view data into compact JSON bytes. Output depends only on
its inputs, so the same ledger always renders to the same bytes. Chart
renderers can be plugged into SnapshotCache in its place as long as they
keep the ``render(view_name, window, data) -> bytes`` signature.
"""
import json
from datetime import date, datetime
from enum import Enum
from typing import Any


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def render_json(view_name: str, window: int, data: dict) -> bytes:
    """Render one view as UTF-8 JSON with sorted keys."""
    document = {
        "view": view_name,
        "window_days": window,
        "data": data,
    }
    return json.dumps(
        document,
        default=_json_default,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
