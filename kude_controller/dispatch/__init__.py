"""Dispatch of reconciliation passes.

A `WorkQueue` invokes a reconcile function with resource keys. It guarantees
that at most one pass runs for a key at a time, coalesces duplicate requests
and owns all retry timing through the `Result` returned by each pass.
"""

from .queue import QueueConfig, Reconcile, Result, WorkQueue

__all__ = [
    "QueueConfig",
    "Reconcile",
    "Result",
    "WorkQueue",
]
