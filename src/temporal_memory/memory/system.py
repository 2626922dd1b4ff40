from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from temporal_memory.config import MemorySettings, get_settings
from temporal_memory.event_log import EventLog
from temporal_memory.memory.associative import AssociativeRecall, EmotionalFilter, FailoverIndex, SearchResult
from temporal_memory.memory.decay import DecayDiagnostics, DecayModel, DecayProfile, EmotionalWeight
from temporal_memory.memory.dreams import ConsolidationReport, DreamConsolidator, DreamMode, DreamSession
from temporal_memory.memory.embeddings import Embedder, HashEmbedder, build_embedder
from temporal_memory.memory.episodes import AssociatedEpisode, Episode, EpisodeStore, EpisodeType
from temporal_memory.storage import QdrantVectorBackend, VectorBackend

logger = logging.getLogger(__name__)


class TemporalMemorySystem:
    """Facade over the decay model, episode store, associative recall and
    dream consolidator.

    Sub-components are built on first use.  A remote vector backend and a
    dream session are optional; without them everything runs in-process.
    """

    def __init__(
        self,
        config: Optional[MemorySettings] = None,
        backend: Optional[VectorBackend] = None,
        embedder: Optional[Embedder] = None,
        dream_session: Optional[DreamSession] = None,
        event_log: Optional[EventLog] = None,
        decay: Optional[DecayModel] = None,
    ) -> None:
        self.config = config or get_settings()
        self._backend = backend
        self._embedder = embedder
        self._dream_session = dream_session
        self._event_log = event_log or EventLog()
        self._decay = decay
        self._store: Optional[EpisodeStore] = None
        self._recall: Optional[AssociativeRecall] = None
        self._consolidator: Optional[DreamConsolidator] = None
        self._scheduler: Any = None  # AutoConsolidationLoop
        self._init_lock = threading.Lock()

    # -- Components ----------------------------------------------------------

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def decay(self) -> DecayModel:
        return self.episode_store.decay

    @property
    def episode_store(self) -> EpisodeStore:
        self._ensure_initialized()
        return self._store

    @property
    def associative(self) -> AssociativeRecall:
        self._ensure_initialized()
        return self._recall

    @property
    def consolidator(self) -> DreamConsolidator:
        self._ensure_initialized()
        return self._consolidator

    def _ensure_initialized(self) -> None:
        if self._consolidator is not None:
            return
        with self._init_lock:
            if self._consolidator is not None:
                return
            cfg = self.config
            decay = self._decay or DecayModel(
                min_strength=cfg.min_strength,
                recall_boost=cfg.recall_boost,
                dream_boost=cfg.dream_boost,
                acceleration_factor=cfg.acceleration_factor,
            )
            store = EpisodeStore(decay, max_episodes=cfg.max_episodes, events=self._event_log)
            embedder = self._embedder or self._init_embedder()
            index = FailoverIndex(
                collection=cfg.qdrant_collection,
                dim=embedder.dim,
                remote=self._backend if self._backend is not None else self._init_qdrant(),
                retry_base_sec=cfg.backend_retry_base_sec,
                retry_max_sec=cfg.backend_retry_max_sec,
                events=self._event_log,
            )
            recall = AssociativeRecall(embedder, index, events=self._event_log, exists=store.__contains__)
            store.on_remove(recall.forget)
            self._store = store
            self._recall = recall
            self._consolidator = DreamConsolidator(
                store, recall, session=self._dream_session, events=self._event_log,
            )
            logger.info(
                "Temporal memory initialised (embedder=%s, remote=%s)",
                type(embedder).__name__, type(index.remote).__name__ if index.remote else None,
            )
            if cfg.auto_consolidation_enabled:
                self.start_auto_consolidation()
            if cfg.auto_prune_enabled:
                store.start(cfg.prune_interval_sec)

    def _init_embedder(self) -> Embedder:
        try:
            return build_embedder(self.config)
        except Exception as exc:
            logger.warning("Embedder %r unavailable, falling back to hash embeddings: %s",
                           self.config.embedding_backend, exc)
            return HashEmbedder(dim=self.config.embedding_dim)

    def _init_qdrant(self) -> Optional[QdrantVectorBackend]:
        if not self.config.qdrant_url:
            return None
        try:
            return QdrantVectorBackend(self.config.qdrant_url, timeout=self.config.qdrant_timeout_sec)
        except Exception as exc:
            logger.warning("Qdrant backend unavailable, using in-memory index: %s", exc)
            return None

    # -- Store / recall ------------------------------------------------------

    def store(
        self,
        content: Any,
        context: Optional[Iterable[str]] = None,
        type: EpisodeType | str = EpisodeType.EXPERIENCE,
        emotional: EmotionalWeight | Dict[str, Any] | None = None,
        decay_profile: DecayProfile | str = DecayProfile.STANDARD,
        associate_with: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Episode:
        episode = self.episode_store.store(
            content,
            context=context,
            type=type,
            emotional=emotional,
            decay_profile=decay_profile,
            associate_with=associate_with,
            metadata=metadata,
        )
        self.associative.embed(episode)
        return episode

    def recall(
        self,
        context: Optional[Iterable[str]] = None,
        type: EpisodeType | str | None = None,
        min_strength: float = 0.1,
        limit: int = 20,
        strengthen: bool = True,
    ) -> List[Episode]:
        return self.episode_store.recall(context=context, type=type, min_strength=min_strength,
                                         limit=limit, strengthen=strengthen)

    def recall_by_id(self, episode_id: str, strengthen: bool = True) -> Optional[Episode]:
        return self.episode_store.recall_by_id(episode_id, strengthen=strengthen)

    def recall_associations(self, episode_id: str, depth: int = 1) -> List[AssociatedEpisode]:
        return self.episode_store.recall_associations(episode_id, depth=depth)

    def add_association(self, id_a: str, id_b: str) -> bool:
        return self.episode_store.add_association(id_a, id_b)

    # -- Search --------------------------------------------------------------

    def search(
        self,
        query: Any,
        top_k: int = 10,
        min_score: float = 0.1,
        emotional_filter: Optional[EmotionalFilter] = None,
    ) -> List[SearchResult]:
        return self.associative.search(query, top_k=top_k, min_score=min_score,
                                       emotional_filter=emotional_filter)

    def search_by_episode(self, episode_id: str, top_k: int = 10) -> List[SearchResult]:
        return self.associative.search_by_episode(episode_id, top_k=top_k)

    def chain_search(self, query: Any, depth: int = 2, branch_factor: int = 3) -> List[SearchResult]:
        return self.associative.chain_search(query, depth=depth, branch_factor=branch_factor)

    # -- Decay ---------------------------------------------------------------

    def get_memory_strength(self, episode_id: str) -> Optional[float]:
        return self.episode_store.current_strength(episode_id)

    def get_decay_diagnostics(self, episode_id: str) -> Optional[DecayDiagnostics]:
        episode = self.episode_store.get(episode_id)
        if episode is None:
            return None
        return self.decay.diagnose(episode.temporal)

    # -- Maintenance ---------------------------------------------------------

    def dream_consolidate(self, mode: DreamMode | str = DreamMode.STANDARD) -> ConsolidationReport:
        return self.consolidator.consolidate(mode)

    def prune(self) -> int:
        return self.episode_store.prune()

    def stats(self) -> Dict[str, Any]:
        stats = self.episode_store.stats()
        stats["indexed_vectors"] = self.associative.index.count()
        stats["remote_backend_failures"] = self.associative.index.failures
        stats["consolidation_cycles"] = self.consolidator.cycle_count
        stats["consolidation_phase"] = self.consolidator.phase.value
        return stats

    def start_auto_consolidation(self, interval_sec: Optional[float] = None,
                                 mode: DreamMode | str = DreamMode.LIGHT) -> None:
        from temporal_memory.services.scheduler import AutoConsolidationLoop

        if self._scheduler is not None and self._scheduler.is_running:
            logger.warning("Auto-consolidation already running")
            return
        interval = interval_sec if interval_sec is not None else self.config.auto_consolidation_interval_sec
        self._scheduler = AutoConsolidationLoop(self.dream_consolidate, interval_sec=interval, mode=mode)
        self._scheduler.start()

    def stop_auto_consolidation(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None

    @property
    def auto_consolidation_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_running

    def close(self) -> None:
        """Stop background maintenance and drop whatever has been forgotten."""
        self.stop_auto_consolidation()
        if self._store is not None:
            self._store.stop()
            pruned = self._store.prune()
            if pruned:
                logger.info("Final prune removed %d forgotten episode(s)", pruned)

    # -- Persistence ---------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        return {"episodes": self.episode_store.export_all()}

    def import_state(self, state: Dict[str, Any]) -> int:
        if not isinstance(state, dict):
            return 0
        imported = self.episode_store.import_episodes(state.get("episodes") or [])
        self.associative.embed_many(imported)
        return len(imported)
