"""Tracing of the steps taken during a reconciliation pass.

Each pass runs inside `trace_context(<resource id>)` and nests its slow steps
(clone, fetch, apply) below it. Entering and leaving a step is logged at debug
level with the elapsed time, and steps that take longer than
`SLOW_STEP_SECONDS` are also logged at info level.
"""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator

_LOGGER = logging.getLogger(__name__)

__all__ = ["trace_context", "current_step"]

SLOW_STEP_SECONDS = 10.0

_steps: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "_steps", default=()
)


def current_step() -> str:
    """Return the path of the step being traced, e.g. `Bundle/ns/name > apply`."""
    return " > ".join(_steps.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Trace a named step nested under the current one."""
    token = _steps.set((*_steps.get(), name))
    label = current_step()
    started = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        elapsed = perf_counter() - started
        _steps.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, elapsed)
        if elapsed > SLOW_STEP_SECONDS:
            _LOGGER.info("%s took %0.1fs", label, elapsed)
