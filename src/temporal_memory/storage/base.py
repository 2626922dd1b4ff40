from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass
class VectorPoint:
    id: int
    vector: Optional[List[float]]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorHit:
    id: int
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


class VectorBackend(Protocol):
    """Similarity index contract.

    Implementations raise :class:`~temporal_memory.errors.BackendUnavailableError`
    on transport failures; the failover index also tolerates any other
    exception from a remote backend.  Scores are cosine similarities in
    [-1, 1], highest first, and only hits at or above ``score_threshold`` are
    returned.
    """

    def ensure_collection(self, name: str, dim: int, metric: str = "cosine") -> None:
        ...

    def upsert(self, name: str, points: Sequence[VectorPoint]) -> None:
        ...

    def search(self, name: str, vector: Sequence[float], limit: int,
               score_threshold: float = 0.0) -> List[VectorHit]:
        ...

    def retrieve(self, name: str, ids: Sequence[int], with_vector: bool = True) -> List[VectorPoint]:
        ...

    def delete(self, name: str, ids: Sequence[int]) -> None:
        ...


def point_id(episode_id: str) -> int:
    """Map an episode id onto a stable positive integer point id."""
    digest = hashlib.sha256(str(episode_id).encode("utf-8")).digest()
    return int.from_bytes(digest[:6], "big")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b:
        return 0.0
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a)) or 1.0
    nb = math.sqrt(sum(y * y for y in b)) or 1.0
    return dot / (na * nb)
