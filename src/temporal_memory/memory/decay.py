"""Forgetting-curve decay model.

A memory's strength decays exponentially from the anchor stored at its last
touch.  The effective half-life is stretched by the consolidation stage and by
emotional weighting::

    boost     = 1 + 0.5 * significance + 0.2 * urgency + 0.3 * resonance
    half_life = base_half_life * stage_multiplier * boost
    strength  = clamp(anchor * exp(-ln2 * elapsed / half_life), min_strength, 1)

Touches (recall, dream consolidation) first collapse the decay since the last
touch into the anchor and only then apply their boost, so strength never jumps
downward at the instant of a touch.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

LN2 = math.log(2.0)

HOUR = 3600.0
DAY = 24 * HOUR

WEAKENING_THRESHOLD = 0.3


class DecayProfile(str, Enum):
    STANDARD = "standard"
    RESILIENT = "resilient"
    FRAGILE = "fragile"
    IMMORTAL = "immortal"

    @property
    def half_life_sec(self) -> float:
        return PROFILE_HALF_LIVES[self]

    @classmethod
    def parse(cls, value: "DecayProfile | str") -> "DecayProfile":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown decay profile: {value!r}") from None


PROFILE_HALF_LIVES: Dict[DecayProfile, float] = {
    DecayProfile.STANDARD: DAY,
    DecayProfile.RESILIENT: 7 * DAY,
    DecayProfile.FRAGILE: 2 * HOUR,
    DecayProfile.IMMORTAL: math.inf,
}


@dataclass(frozen=True)
class ConsolidationStage:
    name: str
    multiplier: float
    min_recalls: int


STAGES: Tuple[ConsolidationStage, ...] = (
    ConsolidationStage("SENSORY", 1.0, 0),
    ConsolidationStage("SHORT_TERM", 2.5, 1),
    ConsolidationStage("WORKING", 6.0, 3),
    ConsolidationStage("LONG_TERM", 20.0, 7),
    ConsolidationStage("PERMANENT", 100.0, 15),
)


def _clamp01(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v):
        return 0.0
    return max(0.0, min(1.0, v))


@dataclass(frozen=True)
class EmotionalWeight:
    """Emotional weighting of a memory.  Fields are clamped to [0, 1]."""
    significance: float = 0.0
    urgency: float = 0.0
    resonance: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "significance", _clamp01(self.significance))
        object.__setattr__(self, "urgency", _clamp01(self.urgency))
        object.__setattr__(self, "resonance", _clamp01(self.resonance))

    @property
    def boost(self) -> float:
        return 1.0 + (0.5 * self.significance + 0.2 * self.urgency + 0.3 * self.resonance)

    def to_dict(self) -> Dict[str, float]:
        return {
            "significance": self.significance,
            "urgency": self.urgency,
            "resonance": self.resonance,
        }

    @classmethod
    def from_value(cls, value: "EmotionalWeight | Dict[str, Any] | None") -> "EmotionalWeight":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls(
            significance=value.get("significance", 0.0),
            urgency=value.get("urgency", 0.0),
            resonance=value.get("resonance", 0.0),
        )


@dataclass
class TemporalRecord:
    profile: DecayProfile
    half_life_sec: float
    created_at: float
    last_interaction_at: float
    emotional: EmotionalWeight = field(default_factory=EmotionalWeight)
    recall_count: int = 0
    stage_index: int = 0
    strength: float = 1.0

    @property
    def stage(self) -> ConsolidationStage:
        return STAGES[self.stage_index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.value,
            "half_life_sec": None if math.isinf(self.half_life_sec) else self.half_life_sec,
            "created_at": self.created_at,
            "last_interaction_at": self.last_interaction_at,
            "emotional": self.emotional.to_dict(),
            "recall_count": self.recall_count,
            "stage_index": self.stage_index,
            "strength": self.strength,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemporalRecord":
        profile = DecayProfile.parse(data.get("profile", DecayProfile.STANDARD))
        half_life = data.get("half_life_sec")
        now = time.time()
        stage_index = int(data.get("stage_index", 0))
        return cls(
            profile=profile,
            half_life_sec=profile.half_life_sec if half_life is None else float(half_life),
            created_at=float(data.get("created_at", now)),
            last_interaction_at=float(data.get("last_interaction_at", now)),
            emotional=EmotionalWeight.from_value(data.get("emotional")),
            recall_count=int(data.get("recall_count", 0)),
            stage_index=max(0, min(len(STAGES) - 1, stage_index)),
            strength=_clamp01(data.get("strength", 1.0)),
        )


@dataclass
class StrengthBuckets:
    active: List[Any] = field(default_factory=list)
    weakening: List[Any] = field(default_factory=list)
    forgotten: List[Any] = field(default_factory=list)


@dataclass
class DecayDiagnostics:
    strength: float
    stage: str
    profile: str
    recall_count: int
    effective_half_life_sec: float
    time_to_forget_sec: float
    emotional_boost: float
    recalls_to_next_stage: int = 0
    age_sec: float = 0.0


class DecayModel:
    def __init__(
        self,
        min_strength: float = 0.01,
        recall_boost: float = 0.15,
        dream_boost: float = 0.3,
        acceleration_factor: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not 0.0 < min_strength < 1.0:
            raise ValueError("min_strength must be in (0, 1)")
        if acceleration_factor <= 0.0:
            raise ValueError("acceleration_factor must be positive")
        self.min_strength = min_strength
        self.recall_boost = recall_boost
        self.dream_boost = dream_boost
        self.acceleration_factor = acceleration_factor
        self.clock = clock or time.time

    def now(self) -> float:
        return self.clock()

    def create_record(
        self,
        profile: DecayProfile | str = DecayProfile.STANDARD,
        significance: float = 0.0,
        urgency: float = 0.0,
        resonance: float = 0.0,
        now: Optional[float] = None,
    ) -> TemporalRecord:
        profile = DecayProfile.parse(profile)
        now = self.now() if now is None else now
        return TemporalRecord(
            profile=profile,
            half_life_sec=profile.half_life_sec,
            created_at=now,
            last_interaction_at=now,
            emotional=EmotionalWeight(significance, urgency, resonance),
        )

    def effective_half_life(self, record: TemporalRecord) -> float:
        if record.profile is DecayProfile.IMMORTAL:
            return math.inf
        return record.half_life_sec * record.stage.multiplier * record.emotional.boost

    def compute_strength(self, record: TemporalRecord, now: Optional[float] = None) -> float:
        if record.profile is DecayProfile.IMMORTAL:
            return 1.0
        now = self.now() if now is None else now
        elapsed = max(0.0, now - record.last_interaction_at)
        half_life = self.effective_half_life(record)
        strength = record.strength * math.exp(-LN2 * elapsed / half_life)
        return max(self.min_strength, min(1.0, strength))

    def on_recall(self, record: TemporalRecord, now: Optional[float] = None) -> TemporalRecord:
        now = self.now() if now is None else now
        self._collapse(record, now)
        record.strength = min(1.0, record.strength + self.recall_boost * (1.0 - record.strength))
        record.recall_count += 1
        self._promote(record)
        return record

    def on_dream_consolidation(self, record: TemporalRecord, boost: Optional[float] = None,
                               now: Optional[float] = None) -> TemporalRecord:
        boost = self.dream_boost if boost is None else boost
        now = self.now() if now is None else now
        self._collapse(record, now)
        record.strength = min(1.0, record.strength + max(0.0, boost))
        record.recall_count += max(1, round(3 * self.acceleration_factor))
        self._promote(record)
        return record

    def should_prune(self, record: TemporalRecord, now: Optional[float] = None) -> bool:
        if record.profile is DecayProfile.IMMORTAL:
            return False
        return self.compute_strength(record, now) <= self.min_strength

    def categorize(self, items: Iterable[Any], now: Optional[float] = None,
                   key: Optional[Callable[[Any], TemporalRecord]] = None) -> StrengthBuckets:
        """Partition records (or objects carrying one, via ``key``) by strength."""
        now = self.now() if now is None else now
        buckets = StrengthBuckets()
        for item in items:
            record = key(item) if key is not None else item
            s = self.compute_strength(record, now)
            if s <= self.min_strength:
                buckets.forgotten.append(item)
            elif s < WEAKENING_THRESHOLD:
                buckets.weakening.append(item)
            else:
                buckets.active.append(item)
        return buckets

    def diagnose(self, record: TemporalRecord, now: Optional[float] = None) -> DecayDiagnostics:
        now = self.now() if now is None else now
        strength = self.compute_strength(record, now)
        half_life = self.effective_half_life(record)
        if record.profile is DecayProfile.IMMORTAL:
            time_to_forget = math.inf
        elif strength <= self.min_strength:
            time_to_forget = 0.0
        else:
            time_to_forget = half_life / LN2 * math.log(strength / self.min_strength)
        return DecayDiagnostics(
            strength=strength,
            stage=record.stage.name,
            profile=record.profile.value,
            recall_count=record.recall_count,
            effective_half_life_sec=half_life,
            time_to_forget_sec=time_to_forget,
            emotional_boost=record.emotional.boost,
            recalls_to_next_stage=self.recalls_to_next_stage(record),
            age_sec=max(0.0, now - record.created_at),
        )

    def recalls_to_next_stage(self, record: TemporalRecord) -> int:
        """Recalls still needed for the next promotion; 0 at the final stage."""
        if record.stage_index >= len(STAGES) - 1:
            return 0
        threshold = STAGES[record.stage_index + 1].min_recalls / self.acceleration_factor
        return max(0, math.ceil(threshold - record.recall_count))

    def _collapse(self, record: TemporalRecord, now: float) -> None:
        record.strength = self.compute_strength(record, now)
        record.last_interaction_at = now

    def _promote(self, record: TemporalRecord) -> None:
        # Stage index only moves forward.
        while record.stage_index < len(STAGES) - 1:
            nxt = STAGES[record.stage_index + 1]
            if record.recall_count >= nxt.min_recalls / self.acceleration_factor:
                record.stage_index += 1
            else:
                break
