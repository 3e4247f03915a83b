"""Utilities for timing the phases of a reconciliation."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")

_timings: contextvars.ContextVar[dict[str, float] | None] = contextvars.ContextVar(
    "_timings", default=None
)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log the time spent in a named phase, nested under any enclosing phase.

    The duration is also added to the collector opened by `collect_timings`,
    if any, keyed by the phase name.
    """
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        elapsed = perf_counter() - t1
        trace.reset(token)
        if (timings := _timings.get()) is not None:
            timings[name] = timings.get(name, 0.0) + elapsed
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, elapsed)


@contextmanager
def collect_timings() -> Generator[dict[str, float], None, None]:
    """Collect the durations of every phase traced within the block."""
    timings: dict[str, float] = {}
    token = _timings.set(timings)
    try:
        yield timings
    finally:
        _timings.reset(token)
