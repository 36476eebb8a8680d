"""
Per-stage deadlines shared with nested collaborator calls.

The router bounds each collaborator stage with asyncio.wait_for. Code running
inside the stage (the completion client) reads the same deadline and gives
up slightly earlier, so its own timeout surfaces as an ordinary exception
instead of an outside cancellation.
"""
import asyncio
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

DEADLINE_MARGIN_SECONDS = 0.05

_deadline_var: ContextVar[Optional[float]] = ContextVar("collaborator_deadline", default=None)


@contextmanager
def collaborator_deadline(timeout_seconds: float) -> Iterator[float]:
    """Set an absolute event-loop deadline for work started inside the block."""
    deadline = asyncio.get_running_loop().time() + timeout_seconds
    token = _deadline_var.set(deadline)
    try:
        yield deadline
    finally:
        _deadline_var.reset(token)


def remaining_seconds(default: float) -> float:
    """
    Time budget for a nested call: ``default`` outside any deadline, otherwise
    the smaller of ``default`` and what is left before the margin.
    """
    deadline = _deadline_var.get()
    if deadline is None:
        return default
    left = deadline - asyncio.get_running_loop().time() - DEADLINE_MARGIN_SECONDS
    return max(0.0, min(default, left))
