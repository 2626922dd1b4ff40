"""Associative recall: embeddings, similarity search and chain traversal.

Vectors are always written to an in-process index.  When a remote backend is
configured it receives the same writes and serves reads; any remote failure
puts it into exponential backoff and the local index answers instead, so
callers never see which path served a query.

Results are ranked by a hybrid score that mixes cosine similarity with the
episode's emotional weighting::

    hybrid = 0.60 * vector + 0.25 * significance + 0.10 * resonance + 0.05 * urgency
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from temporal_memory.event_log import DEGRADED, EventLog
from temporal_memory.memory.decay import EmotionalWeight
from temporal_memory.memory.embeddings import Embedder, content_text, episode_text
from temporal_memory.memory.episodes import Episode
from temporal_memory.storage.base import VectorBackend, VectorHit, VectorPoint, point_id
from temporal_memory.storage.local import LocalVectorBackend

logger = logging.getLogger(__name__)

VECTOR_WEIGHT = 0.60
SIGNIFICANCE_WEIGHT = 0.25
RESONANCE_WEIGHT = 0.10
URGENCY_WEIGHT = 0.05

DEFAULT_MIN_SCORE = 0.1
CHAIN_RESULT_CAP = 50


def hybrid_score(vector_score: float, emotional: EmotionalWeight | Dict[str, Any]) -> float:
    weight = EmotionalWeight.from_value(emotional)
    return (
        VECTOR_WEIGHT * vector_score
        + SIGNIFICANCE_WEIGHT * weight.significance
        + RESONANCE_WEIGHT * weight.resonance
        + URGENCY_WEIGHT * weight.urgency
    )


@dataclass
class EpisodePayload:
    """Typed view of the key-value payload stored next to each vector."""
    episode_id: str
    episode_type: str = "experience"
    context: List[str] = field(default_factory=list)
    emotional: EmotionalWeight = field(default_factory=EmotionalWeight)

    @classmethod
    def from_episode(cls, episode: Episode) -> "EpisodePayload":
        return cls(
            episode_id=episode.id,
            episode_type=episode.type.value,
            context=list(episode.context),
            emotional=episode.emotional,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "episode_id": self.episode_id,
            "type": self.episode_type,
            "context": list(self.context),
            **self.emotional.to_dict(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "EpisodePayload":
        return cls(
            episode_id=str(payload.get("episode_id", "")),
            episode_type=str(payload.get("type", "experience")),
            context=list(payload.get("context") or []),
            emotional=EmotionalWeight.from_value(payload),
        )


@dataclass(frozen=True)
class EmotionalFilter:
    min_significance: float = 0.0
    min_resonance: float = 0.0

    def matches(self, emotional: EmotionalWeight) -> bool:
        return (emotional.significance >= self.min_significance
                and emotional.resonance >= self.min_resonance)


@dataclass
class SearchResult:
    episode_id: str
    score: float
    vector_score: float
    payload: EpisodePayload
    hop_depth: int = 0


class FailoverIndex:
    """Remote-first vector index with a local mirror.

    The remote backend is retried after ``retry_base_sec`` doubling up to
    ``retry_max_sec``; it is never abandoned for the life of the process.
    Writes missed while the remote is backing off are replayed on recovery.
    Any exception raised by the remote counts as unavailability, not only
    :class:`~temporal_memory.errors.BackendUnavailableError`.
    """

    def __init__(
        self,
        collection: str,
        dim: int,
        remote: Optional[VectorBackend] = None,
        local: Optional[LocalVectorBackend] = None,
        retry_base_sec: float = 5.0,
        retry_max_sec: float = 300.0,
        events: Optional[EventLog] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.collection = collection
        self.dim = dim
        self.remote = remote
        self.local = local or LocalVectorBackend()
        self.local.ensure_collection(collection, dim)
        self.retry_base_sec = retry_base_sec
        self.retry_max_sec = retry_max_sec
        self.events = events
        self._clock = clock
        self._failures = 0
        self._retry_at = 0.0
        self._remote_ready = False
        self._stale = False
        self._pending_deletes: Set[int] = set()
        self._lock = threading.Lock()

    @property
    def remote_available(self) -> bool:
        return self.remote is not None and self._clock() >= self._retry_at

    @property
    def failures(self) -> int:
        return self._failures

    def upsert(self, points: Sequence[VectorPoint]) -> None:
        self.local.upsert(self.collection, points)
        if self.remote is None:
            return
        if not self._prepare_remote():
            self._stale = True
            return
        try:
            self.remote.upsert(self.collection, points)
        except Exception as exc:
            self._stale = True
            self._record_failure("upsert", exc)
            return
        self._record_success()

    def search(self, vector: Sequence[float], limit: int, score_threshold: float) -> List[VectorHit]:
        if self._prepare_remote():
            try:
                hits = self.remote.search(self.collection, vector, limit, score_threshold)
                self._record_success()
                return hits
            except Exception as exc:
                self._record_failure("search", exc)
        return self.local.search(self.collection, vector, limit, score_threshold)

    def vector_for(self, pid: int) -> Optional[List[float]]:
        points = self.local.retrieve(self.collection, [pid], with_vector=True)
        if points and points[0].vector is not None:
            return points[0].vector
        if self._prepare_remote():
            try:
                remote_points = self.remote.retrieve(self.collection, [pid], with_vector=True)
                self._record_success()
            except Exception as exc:
                self._record_failure("retrieve", exc)
                return None
            if remote_points and remote_points[0].vector is not None:
                return remote_points[0].vector
        return None

    def delete(self, pids: Sequence[int]) -> None:
        if not pids:
            return
        self.local.delete(self.collection, pids)
        if self.remote is None:
            return
        if not self._prepare_remote():
            with self._lock:
                self._pending_deletes.update(pids)
            return
        try:
            self.remote.delete(self.collection, pids)
        except Exception as exc:
            with self._lock:
                self._pending_deletes.update(pids)
            self._record_failure("delete", exc)
            return
        self._record_success()

    def count(self) -> int:
        return self.local.count(self.collection)

    # -- Internal ------------------------------------------------------------

    def _prepare_remote(self) -> bool:
        if not self.remote_available:
            return False
        try:
            if not self._remote_ready:
                self.remote.ensure_collection(self.collection, self.dim)
                self._remote_ready = True
            if self._stale or self._pending_deletes:
                self._resync()
                self._record_success()
        except Exception as exc:
            self._record_failure("reconnect", exc)
            return False
        return True

    def _resync(self) -> None:
        with self._lock:
            deletes = sorted(self._pending_deletes)
        if deletes:
            self.remote.delete(self.collection, deletes)
            with self._lock:
                self._pending_deletes.difference_update(deletes)
        if self._stale:
            points = self.local.points(self.collection)
            for start in range(0, len(points), 256):
                self.remote.upsert(self.collection, points[start:start + 256])
            self._stale = False
            logger.info("Resynced %d vectors to remote backend", len(points))

    def _record_success(self) -> None:
        if self._failures:
            logger.info("Remote vector backend recovered after %d failure(s)", self._failures)
        self._failures = 0
        self._retry_at = 0.0

    def _record_failure(self, op: str, exc: Exception) -> None:
        self._failures += 1
        delay = min(self.retry_max_sec, self.retry_base_sec * (2 ** (self._failures - 1)))
        self._retry_at = self._clock() + delay
        self._remote_ready = False
        logger.warning("Remote vector backend %s failed (%s); using local index for %.0fs",
                       op, exc, delay)
        if self.events is not None:
            self.events.emit(DEGRADED, component="vector_backend", operation=op, reason=str(exc))


class AssociativeRecall:
    def __init__(
        self,
        embedder: Embedder,
        index: FailoverIndex,
        events: Optional[EventLog] = None,
        exists: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.events = events or EventLog()
        self._exists = exists

    # -- Indexing ------------------------------------------------------------

    def embed(self, episode: Episode) -> Optional[List[float]]:
        """Embed and index an episode.  Failures leave it unsearchable."""
        text = episode_text(episode.content, episode.context, episode.type.value)
        try:
            vector = self.embedder.embed(text)
            point = VectorPoint(point_id(episode.id), vector, EpisodePayload.from_episode(episode).to_payload())
            self.index.upsert([point])
        except Exception as exc:
            logger.warning("Embedding failed for episode %s: %s", episode.id, exc)
            self.events.emit(DEGRADED, component="embedding", id=episode.id, reason=str(exc))
            return None
        return vector

    def embed_many(self, episodes: Iterable[Episode]) -> int:
        return sum(1 for episode in episodes if self.embed(episode) is not None)

    def forget(self, episode_ids: Iterable[str]) -> None:
        pids = [point_id(eid) for eid in episode_ids]
        try:
            self.index.delete(pids)
        except Exception as exc:
            logger.warning("Failed to drop %d vectors: %s", len(pids), exc)

    def has_vector(self, episode_id: str) -> bool:
        return self.index.vector_for(point_id(episode_id)) is not None

    # -- Search --------------------------------------------------------------

    def search(
        self,
        query: Any,
        top_k: int = 10,
        min_score: float = DEFAULT_MIN_SCORE,
        emotional_filter: Optional[EmotionalFilter] = None,
    ) -> List[SearchResult]:
        vector = self._embed_query(query)
        if vector is None:
            return []
        return self._search_vector(vector, top_k, min_score, emotional_filter)

    def search_by_episode(
        self,
        episode_id: str,
        top_k: int = 10,
        min_score: float = DEFAULT_MIN_SCORE,
        emotional_filter: Optional[EmotionalFilter] = None,
    ) -> List[SearchResult]:
        vector = self.index.vector_for(point_id(episode_id))
        if vector is None:
            return []
        return self._search_vector(vector, top_k, min_score, emotional_filter, exclude={episode_id})

    def chain_search(
        self,
        query: Any,
        depth: int = 2,
        branch_factor: int = 3,
        min_score: float = DEFAULT_MIN_SCORE,
        max_results: int = CHAIN_RESULT_CAP,
    ) -> List[SearchResult]:
        """Breadth-first associative walk seeded by the query.

        Each hop searches from every vector on the frontier, keeps up to
        ``branch_factor`` unseen episodes per seed and uses their vectors as
        the next frontier.
        """
        vector = self._embed_query(query)
        if vector is None or depth < 1:
            return []
        results: List[SearchResult] = []
        visited: Set[str] = set()
        frontier: List[List[float]] = [vector]
        for hop in range(1, depth + 1):
            next_frontier: List[List[float]] = []
            for seed in frontier:
                hits = self._search_vector(seed, branch_factor, min_score, None, exclude=visited)
                for hit in hits:
                    if hit.episode_id in visited:
                        continue
                    visited.add(hit.episode_id)
                    hit.hop_depth = hop
                    results.append(hit)
                    if len(results) >= max_results:
                        return results
                    stored = self.index.vector_for(point_id(hit.episode_id))
                    if stored is not None:
                        next_frontier.append(stored)
            if not next_frontier:
                break
            frontier = next_frontier
        return results

    # -- Internal ------------------------------------------------------------

    def _embed_query(self, query: Any) -> Optional[List[float]]:
        try:
            return self.embedder.embed(content_text(query))
        except Exception as exc:
            logger.warning("Query embedding failed: %s", exc)
            self.events.emit(DEGRADED, component="embedding", reason=str(exc))
            return None

    def _search_vector(
        self,
        vector: Sequence[float],
        top_k: int,
        min_score: float,
        emotional_filter: Optional[EmotionalFilter],
        exclude: Optional[Set[str]] = None,
    ) -> List[SearchResult]:
        if top_k <= 0:
            return []
        exclude = exclude or set()
        limit = top_k + len(exclude)
        if emotional_filter is not None:
            limit *= 3
        hits = self.index.search(vector, limit, min_score)
        results: List[SearchResult] = []
        for hit in hits:
            payload = EpisodePayload.from_payload(hit.payload)
            if not payload.episode_id or payload.episode_id in exclude:
                continue
            if self._exists is not None and not self._exists(payload.episode_id):
                continue
            if emotional_filter is not None and not emotional_filter.matches(payload.emotional):
                continue
            if hit.score < min_score:
                continue
            results.append(SearchResult(
                episode_id=payload.episode_id,
                score=hybrid_score(hit.score, payload.emotional),
                vector_score=hit.score,
                payload=payload,
            ))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]
