"""Temporal memory: decaying episodic memories with associative recall."""

from .config import MemorySettings, get_settings, load_settings
from .errors import (
    BackendUnavailableError,
    ConsolidationInProgressError,
    EmbeddingError,
    TemporalMemoryError,
)
from .memory import DecayProfile, DreamMode, EpisodeType, TemporalMemorySystem

__all__ = [
    "MemorySettings",
    "get_settings",
    "load_settings",
    "BackendUnavailableError",
    "ConsolidationInProgressError",
    "EmbeddingError",
    "TemporalMemoryError",
    "DecayProfile",
    "DreamMode",
    "EpisodeType",
    "TemporalMemorySystem",
]
