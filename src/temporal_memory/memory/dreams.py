"""Dream consolidation: the phased maintenance pass over the episode store.

One cycle walks a fixed sequence of phases::

    IDLE -> ENTERING -> PATTERN_SCAN -> STRENGTHENING -> ASSOCIATION
         -> PRUNING -> EMERGING -> EXITING -> IDLE

1. **Enter**: open a dream session (or a local placeholder).
2. **Scan**: rank every episode by current strength.
3. **Strengthen**: apply a dream-consolidation touch to the top fraction.
4. **Associate**: link strong episodes to their nearest neighbours.
5. **Prune**: drop forgotten episodes below the mode's threshold.
6. **Emerge**: DEEP/REM only: report recurring context themes, and in REM
   ask the dream session for creative patterns.
7. **Exit**: close the session.  Always attempted, even after a failure.

Only one cycle runs at a time; a second request fails immediately with
:class:`ConsolidationInProgressError`.  Effects applied before a failure are
kept.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from temporal_memory.errors import ConsolidationInProgressError
from temporal_memory.event_log import CONSOLIDATION, DEGRADED, EventLog
from temporal_memory.memory.associative import AssociativeRecall
from temporal_memory.memory.episodes import Episode, EpisodeStore

logger = logging.getLogger(__name__)

ASSOCIATION_MIN_SCORE = 0.4
ASSOCIATION_NEIGHBOURS = 5
THEME_WINDOW = 20
THEME_MIN_OCCURRENCES = 3
HISTORY_SIZE = 10


class DreamPhase(str, Enum):
    IDLE = "idle"
    ENTERING = "entering"
    PATTERN_SCAN = "pattern_scan"
    STRENGTHENING = "strengthening"
    ASSOCIATION = "association"
    PRUNING = "pruning"
    EMERGING = "emerging"
    EXITING = "exiting"


class DreamMode(str, Enum):
    LIGHT = "light"
    STANDARD = "standard"
    DEEP = "deep"
    REM = "rem"

    @classmethod
    def parse(cls, value: "DreamMode | str") -> "DreamMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown dream mode: {value!r}") from None


@dataclass(frozen=True)
class ModeProfile:
    strengthen_fraction: float
    association_batch: int
    prune_threshold: float
    emerge: bool = False
    creative: bool = False


MODE_PROFILES: Dict[DreamMode, ModeProfile] = {
    DreamMode.LIGHT: ModeProfile(0.10, 10, 0.02),
    DreamMode.STANDARD: ModeProfile(0.20, 25, 0.05),
    DreamMode.DEEP: ModeProfile(0.35, 50, 0.08, emerge=True),
    DreamMode.REM: ModeProfile(0.15, 40, 0.03, emerge=True, creative=True),
}


class DreamSession(Protocol):
    """External dream-session collaborator."""

    def initialize_dream_state(self, meta: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def close_dream_state(self, state_id: str) -> None:
        ...

    def process_patterns(self, state_id: str) -> Dict[str, Any]:
        ...


class LocalDreamSession:
    """Stand-in session used when no external collaborator is configured.

    Hands out placeholder ids and discovers no patterns.
    """

    def initialize_dream_state(self, meta: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": _placeholder_id(), "local": True}

    def close_dream_state(self, state_id: str) -> None:
        return None

    def process_patterns(self, state_id: str) -> Dict[str, Any]:
        return {"patterns": []}


@dataclass
class DreamInsight:
    kind: str
    description: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConsolidationReport:
    mode: DreamMode
    session_id: str = ""
    scanned: int = 0
    strengthened: int = 0
    associations_created: int = 0
    pruned: int = 0
    insights: List[DreamInsight] = field(default_factory=list)
    started_at: float = 0.0
    duration_sec: float = 0.0


def _placeholder_id() -> str:
    return f"local-dream-{uuid.uuid4().hex[:12]}"


class DreamConsolidator:
    def __init__(
        self,
        store: EpisodeStore,
        recall: AssociativeRecall,
        session: Optional[DreamSession] = None,
        events: Optional[EventLog] = None,
        dream_boost: Optional[float] = None,
    ) -> None:
        self._store = store
        self._recall = recall
        self._session = session or LocalDreamSession()
        self._events = events or store.events
        self._dream_boost = dream_boost
        self._phase = DreamPhase.IDLE
        self._guard = threading.Lock()
        self._cycle_count = 0
        self._history: List[ConsolidationReport] = []

    @property
    def phase(self) -> DreamPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._phase is not DreamPhase.IDLE

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def history(self) -> List[ConsolidationReport]:
        return list(self._history)

    def consolidate(self, mode: DreamMode | str = DreamMode.STANDARD,
                    now: Optional[float] = None) -> ConsolidationReport:
        mode = DreamMode.parse(mode)
        with self._guard:
            if self._phase is not DreamPhase.IDLE:
                raise ConsolidationInProgressError(
                    f"Dream consolidation in progress (phase={self._phase.value})"
                )
            self._phase = DreamPhase.ENTERING

        profile = MODE_PROFILES[mode]
        report = ConsolidationReport(mode=mode, started_at=time.time())
        handle: Optional[str] = None
        external = False
        t0 = time.monotonic()
        try:
            handle, external = self._enter(mode)
            report.session_id = handle

            self._phase = DreamPhase.PATTERN_SCAN
            now = self._store.decay.now() if now is None else now
            ranked = self._store.snapshot(now)
            report.scanned = len(ranked)

            self._phase = DreamPhase.STRENGTHENING
            report.strengthened = self._strengthen(ranked, profile, now)

            self._phase = DreamPhase.ASSOCIATION
            report.associations_created = self._associate(ranked, profile)

            self._phase = DreamPhase.PRUNING
            pruned = self._store.prune_episodes(now, below=profile.prune_threshold)
            report.pruned = len(pruned)

            if profile.emerge:
                self._phase = DreamPhase.EMERGING
                removed = set(pruned)
                survivors = [e for e, _ in ranked if e.id not in removed]
                report.insights = self._emerge(survivors, profile, handle if external else None)
        finally:
            self._phase = DreamPhase.EXITING
            if handle is not None and external:
                self._exit(handle)
            self._phase = DreamPhase.IDLE

        report.duration_sec = time.monotonic() - t0
        self._cycle_count += 1
        self._history.append(report)
        del self._history[:-HISTORY_SIZE]
        logger.info(
            "Dream consolidation (%s) scanned=%d strengthened=%d associations=%d pruned=%d insights=%d duration=%.2fs",
            mode.value, report.scanned, report.strengthened, report.associations_created,
            report.pruned, len(report.insights), report.duration_sec,
        )
        self._events.emit(
            CONSOLIDATION,
            mode=mode.value,
            session_id=report.session_id,
            count=report.strengthened,
            associations=report.associations_created,
            pruned=report.pruned,
        )
        return report

    # -- Phases --------------------------------------------------------------

    def _enter(self, mode: DreamMode) -> tuple[str, bool]:
        try:
            state = self._session.initialize_dream_state({
                "mode": mode.value,
                "episodes": len(self._store),
                "timestamp": time.time(),
            })
            state_id = str(state.get("id") or "")
            if state_id and not state.get("local"):
                return state_id, True
            if state_id:
                return state_id, False
        except Exception as exc:
            logger.warning("Dream session unavailable, using placeholder: %s", exc)
            self._events.emit(DEGRADED, component="dream_session", reason=str(exc))
        return _placeholder_id(), False

    def _strengthen(self, ranked: List[tuple[Episode, float]], profile: ModeProfile, now: float) -> int:
        if not ranked:
            return 0
        count = max(1, math.ceil(len(ranked) * profile.strengthen_fraction))
        ids = [episode.id for episode, _ in ranked[:count]]
        return len(self._store.consolidate(ids, boost=self._dream_boost, now=now))

    def _associate(self, ranked: List[tuple[Episode, float]], profile: ModeProfile) -> int:
        created = 0
        for episode, _ in ranked[:profile.association_batch]:
            if episode.id not in self._store:
                continue
            matches = self._recall.search_by_episode(
                episode.id, top_k=ASSOCIATION_NEIGHBOURS, min_score=ASSOCIATION_MIN_SCORE,
            )
            for match in matches:
                if match.vector_score >= ASSOCIATION_MIN_SCORE:
                    if self._store.add_association(episode.id, match.episode_id):
                        created += 1
        return created

    def _emerge(self, survivors: List[Episode], profile: ModeProfile,
                handle: Optional[str]) -> List[DreamInsight]:
        window = survivors[:THEME_WINDOW]
        tally: Counter[str] = Counter()
        for episode in window:
            tally.update({tag.lower() for tag in episode.context})
        insights = [
            DreamInsight(
                kind="recurring_theme",
                description=f"Recurring theme: {tag}",
                details={
                    "tag": tag,
                    "occurrences": n,
                    "episode_ids": [e.id for e in window if tag in {t.lower() for t in e.context}],
                },
            )
            for tag, n in sorted(tally.items(), key=lambda kv: (-kv[1], kv[0]))
            if n >= THEME_MIN_OCCURRENCES
        ]

        if profile.creative and handle is not None:
            try:
                result = self._session.process_patterns(handle) or {}
                patterns = result.get("patterns") or []
                if patterns or result.get("intuition"):
                    insights.append(DreamInsight(
                        kind="dream_pattern",
                        description=f"Dream session surfaced {len(patterns)} pattern(s)",
                        details={"patterns": patterns, "intuition": result.get("intuition")},
                    ))
            except Exception as exc:
                logger.warning("Dream pattern discovery failed: %s", exc)
                self._events.emit(DEGRADED, component="dream_session", reason=str(exc))
        return insights

    def _exit(self, handle: str) -> None:
        try:
            self._session.close_dream_state(handle)
        except Exception as exc:
            logger.warning("Failed to close dream session %s: %s", handle, exc)
            self._events.emit(DEGRADED, component="dream_session", reason=str(exc))
