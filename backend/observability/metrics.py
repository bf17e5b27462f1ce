"""
Timing helpers for observability.

- Durations use monotonic time (immune to clock changes)
- Each measurement is emitted as one METRIC_TIMER log event; nothing is aggregated
- `outcome` records whether the timed block raised, so failed connects are
  distinguishable from slow ones
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    client_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Measure the duration of the enclosed block.

    The metric is emitted exactly once, including when the block raises;
    the exception is re-raised untouched.

    Usage:
        with timed("upstream_connect", client_id=self._client_id):
            ws = await connect(url)
    """
    start_ns = time.monotonic_ns()
    outcome = "ok"
    try:
        yield
    except BaseException:
        outcome = "error"
        raise
    finally:
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "outcome": outcome,
            "client_id": client_id,
            "details": details or {},
        })
