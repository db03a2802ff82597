"""Domain primitives shared by engines and services."""

from stockledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
