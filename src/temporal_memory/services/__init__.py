"""Background services for the temporal memory subsystem."""

from .runtime import get_memory_system, reset_memory_system
from .scheduler import AutoConsolidationLoop, IntervalLoop, PruneLoop

__all__ = [
    "AutoConsolidationLoop",
    "IntervalLoop",
    "PruneLoop",
    "get_memory_system",
    "reset_memory_system",
]
