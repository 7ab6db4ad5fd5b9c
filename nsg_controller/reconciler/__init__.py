from .coalescer import CoalescerState, EventCoalescer
from .reconciler import ReconciliationEngine, ReconciliationResult

__all__ = [
    "CoalescerState",
    "EventCoalescer",
    "ReconciliationEngine",
    "ReconciliationResult",
]
