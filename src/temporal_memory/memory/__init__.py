"""Memory subsystem: decay, episodes, associative recall and consolidation."""

from .decay import (
    STAGES,
    ConsolidationStage,
    DecayDiagnostics,
    DecayModel,
    DecayProfile,
    EmotionalWeight,
    StrengthBuckets,
    TemporalRecord,
)
from .episodes import AssociatedEpisode, Episode, EpisodeStore, EpisodeType, StrengthChange
from .embeddings import (
    Embedder,
    HashEmbedder,
    OllamaEmbedder,
    OpenRouterEmbedder,
    SentenceTransformerEmbedder,
    build_embedder,
)
from .associative import (
    AssociativeRecall,
    EmotionalFilter,
    EpisodePayload,
    FailoverIndex,
    SearchResult,
    hybrid_score,
)
from .dreams import (
    ConsolidationReport,
    DreamConsolidator,
    DreamInsight,
    DreamMode,
    DreamPhase,
    DreamSession,
    LocalDreamSession,
)
from .system import TemporalMemorySystem

__all__ = [
    "STAGES",
    "ConsolidationStage",
    "DecayDiagnostics",
    "DecayModel",
    "DecayProfile",
    "EmotionalWeight",
    "StrengthBuckets",
    "TemporalRecord",
    "AssociatedEpisode",
    "Episode",
    "EpisodeStore",
    "EpisodeType",
    "StrengthChange",
    "Embedder",
    "HashEmbedder",
    "OllamaEmbedder",
    "OpenRouterEmbedder",
    "SentenceTransformerEmbedder",
    "build_embedder",
    "AssociativeRecall",
    "EmotionalFilter",
    "EpisodePayload",
    "FailoverIndex",
    "SearchResult",
    "hybrid_score",
    "ConsolidationReport",
    "DreamConsolidator",
    "DreamInsight",
    "DreamMode",
    "DreamPhase",
    "DreamSession",
    "LocalDreamSession",
    "TemporalMemorySystem",
]
