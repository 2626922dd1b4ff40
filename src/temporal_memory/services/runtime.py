from __future__ import annotations

from temporal_memory.memory.system import TemporalMemorySystem


_MEMORY_SYSTEM: TemporalMemorySystem | None = None


def get_memory_system() -> TemporalMemorySystem:
    global _MEMORY_SYSTEM
    if _MEMORY_SYSTEM is None:
        _MEMORY_SYSTEM = TemporalMemorySystem()
    return _MEMORY_SYSTEM


def reset_memory_system() -> None:
    """Stop and drop the process-wide system (used between tests)."""
    global _MEMORY_SYSTEM
    if _MEMORY_SYSTEM is not None:
        _MEMORY_SYSTEM.close()
    _MEMORY_SYSTEM = None
