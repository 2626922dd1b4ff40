from __future__ import annotations

import logging
import math
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from temporal_memory.event_log import CONSOLIDATION, PRUNE, RECALL, STORE, EventLog
from temporal_memory.memory.decay import (
    STAGES,
    WEAKENING_THRESHOLD,
    DecayModel,
    DecayProfile,
    EmotionalWeight,
    TemporalRecord,
)

logger = logging.getLogger(__name__)

MAX_EPISODES = 500_000
PRUNE_INTERVAL_SEC = 600.0
EVICT_FRACTION = 0.1


class EpisodeType(str, Enum):
    EXPERIENCE = "experience"
    DECISION = "decision"
    INSIGHT = "insight"
    INTERACTION = "interaction"
    REFLECTION = "reflection"
    OBSERVATION = "observation"
    FACT = "fact"
    ERROR = "error"
    MILESTONE = "milestone"

    @classmethod
    def parse(cls, value: "EpisodeType | str") -> "EpisodeType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown episode type: {value!r}") from None


@dataclass
class Episode:
    id: str
    content: Any
    temporal: TemporalRecord
    context: List[str] = field(default_factory=list)
    type: EpisodeType = EpisodeType.EXPERIENCE
    associations: Set[str] = field(default_factory=set)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def created_at(self) -> float:
        return self.temporal.created_at

    @property
    def emotional(self) -> EmotionalWeight:
        return self.temporal.emotional

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "context": list(self.context),
            "type": self.type.value,
            "temporal": self.temporal.to_dict(),
            "associations": sorted(self.associations),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Episode":
        return cls(
            id=str(data["id"]),
            content=data.get("content"),
            temporal=TemporalRecord.from_dict(data.get("temporal") or {}),
            context=_dedupe_tags(data.get("context") or []),
            type=EpisodeType.parse(data.get("type", EpisodeType.EXPERIENCE)),
            associations=set(data.get("associations") or []),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class AssociatedEpisode:
    episode: Episode
    strength: float
    depth: int


@dataclass
class StrengthChange:
    id: str
    strength_before: float
    strength_after: float
    stage: str


def _dedupe_tags(tags: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for tag in tags:
        tag = str(tag)
        if tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


def _to_base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(digits[r])
    return "".join(reversed(out))


def generate_episode_id() -> str:
    return f"ep-{_to_base36(int(time.time() * 1000))}-{os.urandom(6).hex()}"


class EpisodeStore:
    """Canonical owner of the episode collection.

    Writes are serialised behind a re-entrant lock; reads take the same lock
    only long enough to snapshot the collection.
    """

    def __init__(self, decay: Optional[DecayModel] = None, max_episodes: int = MAX_EPISODES,
                 events: Optional[EventLog] = None) -> None:
        self.decay = decay or DecayModel()
        self.max_episodes = max_episodes
        self.events = events or EventLog()
        self._episodes: Dict[str, Episode] = {}
        self._context_index: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        self._removal_listeners: List[Callable[[List[str]], None]] = []
        self._prune_loop: Any = None  # PruneLoop
        self._stats = {
            "total_stored": 0,
            "total_recalled": 0,
            "total_pruned": 0,
            "total_consolidated": 0,
        }

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __len__(self) -> int:
        return len(self._episodes)

    def __contains__(self, episode_id: object) -> bool:
        return episode_id in self._episodes

    def get(self, episode_id: str) -> Optional[Episode]:
        """Look up an episode without touching its temporal record."""
        return self._episodes.get(episode_id)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._episodes)

    def on_remove(self, listener: Callable[[List[str]], None]) -> None:
        """Register a callback invoked with the ids of removed episodes."""
        self._removal_listeners.append(listener)

    # -- Background pruning -------------------------------------------------

    def start(self, interval_sec: float = PRUNE_INTERVAL_SEC) -> None:
        """Prune forgotten episodes every ``interval_sec`` on a daemon thread."""
        from temporal_memory.services.scheduler import PruneLoop

        if self.is_pruning:
            return
        self._prune_loop = PruneLoop(self.prune, interval_sec=interval_sec)
        self._prune_loop.start()

    def stop(self) -> None:
        if self._prune_loop is not None:
            self._prune_loop.stop()
            self._prune_loop = None

    @property
    def is_pruning(self) -> bool:
        return self._prune_loop is not None and self._prune_loop.is_running

    # -- Store ---------------------------------------------------------------

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
        episode_type = EpisodeType.parse(type)
        weight = EmotionalWeight.from_value(emotional)
        evicted: List[str] = []
        with self._lock:
            if len(self._episodes) >= self.max_episodes:
                self.prune()
                if len(self._episodes) >= self.max_episodes:
                    evicted = self._evict_weakest()

            temporal = self.decay.create_record(
                decay_profile,
                significance=weight.significance,
                urgency=weight.urgency,
                resonance=weight.resonance,
            )
            episode = Episode(
                id=generate_episode_id(),
                content=content,
                temporal=temporal,
                context=_dedupe_tags(context or []),
                type=episode_type,
                metadata=dict(metadata or {}),
            )
            self._insert(episode)
            for other_id in associate_with or []:
                self.add_association(episode.id, other_id)
            self._stats["total_stored"] += 1

        if evicted:
            self._notify_removed(evicted)
        self.events.emit(STORE, id=episode.id, type=episode.type.value, context=list(episode.context))
        return episode

    # -- Recall --------------------------------------------------------------

    def recall(
        self,
        context: Optional[Iterable[str]] = None,
        type: EpisodeType | str | None = None,
        min_strength: float = 0.1,
        limit: int = 20,
        strengthen: bool = True,
        now: Optional[float] = None,
    ) -> List[Episode]:
        """Return episodes above ``min_strength``, strongest first.

        ``context`` matches any of the given tags (case-insensitive).  With
        ``strengthen`` the returned episodes receive a recall touch.
        """
        now = self.decay.now() if now is None else now
        episode_type = EpisodeType.parse(type) if type is not None else None
        tags = [t for t in (context or []) if t]
        with self._lock:
            if tags:
                candidate_ids: Set[str] = set()
                for tag in tags:
                    candidate_ids |= self._context_index.get(tag.lower(), set())
            else:
                candidate_ids = set(self._episodes)

            scored: List[Tuple[Episode, float]] = []
            for eid in candidate_ids:
                episode = self._episodes.get(eid)
                if episode is None:
                    continue
                if episode_type is not None and episode.type is not episode_type:
                    continue
                strength = self.decay.compute_strength(episode.temporal, now)
                if strength < min_strength:
                    continue
                scored.append((episode, strength))

            scored.sort(key=lambda x: x[1], reverse=True)
            top = [episode for episode, _ in scored[:max(0, limit)]]
            if strengthen:
                for episode in top:
                    self.decay.on_recall(episode.temporal, now=now)
            self._stats["total_recalled"] += len(top)

        self.events.emit(RECALL, count=len(top), context=tags)
        return top

    def recall_by_id(self, episode_id: str, strengthen: bool = True,
                     now: Optional[float] = None) -> Optional[Episode]:
        with self._lock:
            episode = self._episodes.get(episode_id)
            if episode is None:
                return None
            if strengthen:
                self.decay.on_recall(episode.temporal, now=now)
            self._stats["total_recalled"] += 1
        self.events.emit(RECALL, count=1, id=episode_id)
        return episode

    def recall_associations(self, episode_id: str, depth: int = 1,
                            now: Optional[float] = None) -> List[AssociatedEpisode]:
        """Breadth-first walk of the association graph up to ``depth`` links
        away.  Each reachable episode is reported once, at its shortest
        distance; forgotten episodes are neither reported nor walked through.
        Within one distance the strongest episodes come first."""
        now = self.decay.now() if now is None else now
        results: List[AssociatedEpisode] = []
        with self._lock:
            if episode_id not in self._episodes:
                return results
            visited: Set[str] = {episode_id}
            frontier = [episode_id]
            for d in range(1, depth + 1):
                level: List[AssociatedEpisode] = []
                for current in frontier:
                    for nid in self._episodes[current].associations:
                        if nid in visited:
                            continue
                        visited.add(nid)
                        neighbour = self._episodes.get(nid)
                        if neighbour is None:
                            continue
                        strength = self.decay.compute_strength(neighbour.temporal, now)
                        if strength > self.decay.min_strength:
                            level.append(AssociatedEpisode(neighbour, strength, d))
                if not level:
                    break
                level.sort(key=lambda a: (-a.strength, a.episode.id))
                results.extend(level)
                frontier = [a.episode.id for a in level]
        return results

    def current_strength(self, episode_id: str, now: Optional[float] = None) -> Optional[float]:
        episode = self._episodes.get(episode_id)
        if episode is None:
            return None
        return self.decay.compute_strength(episode.temporal, now)

    def snapshot(self, now: Optional[float] = None) -> List[Tuple[Episode, float]]:
        """Every episode paired with its current strength, strongest first."""
        now = self.decay.now() if now is None else now
        with self._lock:
            ranked = [(e, self.decay.compute_strength(e.temporal, now)) for e in self._episodes.values()]
        ranked.sort(key=lambda x: x[1], reverse=True)
        return ranked

    # -- Associations --------------------------------------------------------

    def add_association(self, id_a: str, id_b: str) -> bool:
        """Link two episodes both ways.  Returns True when a new link was made."""
        if id_a == id_b:
            return False
        with self._lock:
            a = self._episodes.get(id_a)
            b = self._episodes.get(id_b)
            if a is None or b is None:
                return False
            created = id_b not in a.associations or id_a not in b.associations
            a.associations.add(id_b)
            b.associations.add(id_a)
            return created

    # -- Consolidation ------------------------------------------------------

    def consolidate(self, episode_ids: Optional[Iterable[str]] = None, boost: Optional[float] = None,
                    now: Optional[float] = None) -> List[StrengthChange]:
        """Apply a dream-consolidation touch to the given episodes.

        Without ids (or with an empty list), weakening episodes (strength
        between 0.1 and 0.5) that carry significance above 0.3 are selected.
        """
        now = self.decay.now() if now is None else now
        ids = list(episode_ids or [])
        with self._lock:
            if ids:
                targets = [self._episodes[i] for i in ids if i in self._episodes]
            else:
                targets = []
                for episode in self._episodes.values():
                    s = self.decay.compute_strength(episode.temporal, now)
                    if 0.1 < s < 0.5 and episode.emotional.significance > 0.3:
                        targets.append(episode)

            changes: List[StrengthChange] = []
            for episode in targets:
                before = self.decay.compute_strength(episode.temporal, now)
                self.decay.on_dream_consolidation(episode.temporal, boost, now=now)
                after = self.decay.compute_strength(episode.temporal, now)
                changes.append(StrengthChange(episode.id, before, after, episode.temporal.stage.name))
            self._stats["total_consolidated"] += len(changes)
        self.events.emit(CONSOLIDATION, count=len(changes), ids=[c.id for c in changes])
        return changes

    # -- Pruning -------------------------------------------------------------

    def prune(self, now: Optional[float] = None) -> int:
        return len(self.prune_episodes(now))

    def prune_episodes(self, now: Optional[float] = None, below: Optional[float] = None) -> List[str]:
        """Remove forgotten episodes and return their ids.

        With ``below`` an episode must additionally sit under that strength.
        """
        now = self.decay.now() if now is None else now
        with self._lock:
            forgotten = []
            for eid, episode in self._episodes.items():
                if not self.decay.should_prune(episode.temporal, now):
                    continue
                if below is not None and self.decay.compute_strength(episode.temporal, now) >= below:
                    continue
                forgotten.append(eid)
            for eid in forgotten:
                self._remove(eid)
            self._stats["total_pruned"] += len(forgotten)
        if forgotten:
            self._notify_removed(forgotten)
            self.events.emit(PRUNE, count=len(forgotten))
        return forgotten

    # -- Persistence ---------------------------------------------------------

    def export_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [episode.to_dict() for episode in self._episodes.values()]

    def import_all(self, data: Iterable[Dict[str, Any]]) -> int:
        return len(self.import_episodes(data))

    def import_episodes(self, data: Iterable[Dict[str, Any]]) -> List[Episode]:
        """Restore exported episodes.  Ids already present are skipped."""
        imported: List[Episode] = []
        with self._lock:
            for item in data or []:
                if not isinstance(item, dict) or not item.get("id") or "content" not in item:
                    continue
                if item["id"] in self._episodes:
                    continue
                try:
                    episode = Episode.from_dict(item)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Skipping malformed episode %r: %s", item.get("id"), exc)
                    continue
                self._insert(episode)
                imported.append(episode)
            # Links may point at episodes imported later in the batch.
            for episode in imported:
                for other in list(episode.associations):
                    peer = self._episodes.get(other)
                    if peer is None:
                        episode.associations.discard(other)
                    else:
                        peer.associations.add(episode.id)
        return imported

    # -- Statistics ----------------------------------------------------------

    def stats(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self.decay.now() if now is None else now
        with self._lock:
            episodes = list(self._episodes.values())
            tag_count = len(self._context_index)
        active = weakening = 0
        total_strength = 0.0
        types: Dict[str, int] = {}
        stages: Dict[str, int] = {s.name: 0 for s in STAGES}
        links = 0
        for episode in episodes:
            s = self.decay.compute_strength(episode.temporal, now)
            total_strength += s
            if s >= WEAKENING_THRESHOLD:
                active += 1
            elif s > self.decay.min_strength:
                weakening += 1
            types[episode.type.value] = types.get(episode.type.value, 0) + 1
            stages[episode.temporal.stage.name] += 1
            links += len(episode.associations)
        total = len(episodes)
        return {
            "total_episodes": total,
            "active_episodes": active,
            "weakening_episodes": weakening,
            "average_strength": total_strength / total if total else 0.0,
            "capacity_used": total / self.max_episodes,
            "type_distribution": types,
            "stage_distribution": stages,
            "associations": links // 2,
            "context_tags": tag_count,
            **self._stats,
        }

    # -- Internal ------------------------------------------------------------

    def _insert(self, episode: Episode) -> None:
        self._episodes[episode.id] = episode
        for tag in episode.context:
            self._context_index.setdefault(tag.lower(), set()).add(episode.id)

    def _remove(self, episode_id: str) -> None:
        episode = self._episodes.pop(episode_id, None)
        if episode is None:
            return
        for tag in episode.context:
            ids = self._context_index.get(tag.lower())
            if ids is not None:
                ids.discard(episode_id)
                if not ids:
                    del self._context_index[tag.lower()]
        for nid in episode.associations:
            peer = self._episodes.get(nid)
            if peer is not None:
                peer.associations.discard(episode_id)

    def _evict_weakest(self) -> List[str]:
        now = self.decay.now()
        ranked = sorted(self._episodes.values(), key=lambda e: self.decay.compute_strength(e.temporal, now))
        evict = [episode.id for episode in ranked[:math.ceil(self.max_episodes * EVICT_FRACTION)]]
        for eid in evict:
            self._remove(eid)
        logger.warning("Episode store at capacity (%d); evicted %d weakest episodes",
                       self.max_episodes, len(evict))
        return evict

    def _notify_removed(self, ids: List[str]) -> None:
        for listener in list(self._removal_listeners):
            try:
                listener(ids)
            except Exception as exc:
                logger.warning("Removal listener failed: %s", exc)
