"""Exception hierarchy for the temporal memory subsystem."""

from __future__ import annotations


class TemporalMemoryError(Exception):
    """Base exception for all temporal memory errors."""


class ConsolidationInProgressError(TemporalMemoryError):
    """Raised when a dream consolidation is requested while one is running."""


class BackendUnavailableError(TemporalMemoryError):
    """Raised when a vector backend cannot be reached or rejects a request."""


class EmbeddingError(TemporalMemoryError):
    """Raised when an embedding operation fails.

    Common causes include an unreachable embedding server, an unexpected
    response payload, or a vector whose dimension does not match the index.
    """
