"""
JSONL event logger.

- One JSON object per line on stdout
- No buffering, no batching
- Records missing a timestamp get `ts_ms` stamped at write time
- Never raises: a relay must keep running even when a log record is bad
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping

PREVIEW_CHARS = 100


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def now_ms() -> int:
    """Wall-clock milliseconds for log correlation."""
    return time.time_ns() // 1_000_000


def preview(payload: str | bytes, limit: int = PREVIEW_CHARS) -> str:
    """Short, log-safe rendering of an inbound payload."""
    if isinstance(payload, bytes):
        return f"<{len(payload)} bytes>"
    if len(payload) <= limit:
        return payload
    return payload[:limit] + "..."


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies `event_type` plus whatever correlation fields apply
    (client_id, state, reason...). `ts_ms` is added when absent.
    """
    record: dict[str, Any] = dict(event)
    record.setdefault("ts_ms", now_ms())

    try:
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": record["ts_ms"],
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
