"""Shared fixtures for the temporal memory test suite."""

from unittest.mock import MagicMock

import pytest

from temporal_memory.config import MemorySettings
from temporal_memory.memory.decay import DecayModel
from temporal_memory.memory.embeddings import HashEmbedder
from temporal_memory.memory.episodes import EpisodeStore
from temporal_memory.memory.system import TemporalMemorySystem

T0 = 1_700_000_000.0
HOUR = 3600.0


class FakeClock:
    """Manually advanced clock usable wherever ``time.time`` is injected."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def decay(clock):
    return DecayModel(clock=clock)


@pytest.fixture
def store(decay):
    return EpisodeStore(decay)


@pytest.fixture
def settings():
    return MemorySettings(qdrant_url=None, embedding_backend="hash", auto_consolidation_enabled=False)


@pytest.fixture
def system(settings, clock):
    mem = TemporalMemorySystem(
        settings,
        embedder=HashEmbedder(dim=settings.embedding_dim),
        decay=DecayModel(clock=clock),
    )
    yield mem
    mem.close()


@pytest.fixture
def mock_qdrant():
    """Mock Qdrant client."""
    client = MagicMock()
    client.get_collections = MagicMock()
    client.create_collection = MagicMock()
    client.upsert = MagicMock()
    client.query_points = MagicMock()
    client.retrieve = MagicMock()
    client.delete = MagicMock()
    return client


KEYWORDS = ("alpha", "beta", "gamma", "delta")


class AxisEmbedder:
    """One axis per keyword, so cosines between test texts are known exactly."""

    dim = len(KEYWORDS)

    def embed(self, text):
        return [float(text.count(k)) for k in KEYWORDS]
