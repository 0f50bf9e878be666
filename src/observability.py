"""
Latency tracing for engine operations.

Every coordinator call and every spreadsheet round trip runs inside a
``trace_span`` so a slow or failing submission can be reconstructed from
logs alone: which step ran, for whom, how long it took, and whether it
raised.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger("leave_engine.trace")


@contextmanager
def trace_span(name: str, **metadata):
    """
    Measure execution duration of an engine operation.

    Example log:
    [TRACE] submit duration_ms=12.40 outcome=ok employee=1001

    Guarantees
    ----------
    - Always logs completion, including the exception type on failure
    - Never suppresses exceptions
    - Produces structured key=value logs
    """
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception as exc:
        outcome = type(exc).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000

        meta = " ".join(f"{k}={v}" for k, v in metadata.items())
        logger.info("[TRACE] %s duration_ms=%.2f outcome=%s %s", name, duration_ms, outcome, meta)
