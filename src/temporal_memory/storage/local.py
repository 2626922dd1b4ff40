from __future__ import annotations

import threading
from typing import Dict, List, Sequence

from temporal_memory.storage.base import VectorHit, VectorPoint, cosine_similarity


class LocalVectorBackend:
    """In-process brute-force cosine index with the same contract as Qdrant."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[int, VectorPoint]] = {}
        self._dims: Dict[str, int] = {}
        self._lock = threading.Lock()

    def ensure_collection(self, name: str, dim: int, metric: str = "cosine") -> None:
        if metric.lower() != "cosine":
            raise ValueError(f"Local backend only supports cosine distance, got {metric!r}")
        with self._lock:
            if name not in self._collections:
                self._collections[name] = {}
                self._dims[name] = dim

    def upsert(self, name: str, points: Sequence[VectorPoint]) -> None:
        with self._lock:
            collection = self._require(name)
            dim = self._dims[name]
            for point in points:
                if point.vector is None or len(point.vector) != dim:
                    raise ValueError(f"Vector for point {point.id} does not match dimension {dim}")
                collection[point.id] = VectorPoint(point.id, list(point.vector), dict(point.payload))

    def search(self, name: str, vector: Sequence[float], limit: int,
               score_threshold: float = 0.0) -> List[VectorHit]:
        with self._lock:
            points = list(self._require(name).values())
        hits = []
        for point in points:
            score = cosine_similarity(vector, point.vector or [])
            if score >= score_threshold:
                hits.append(VectorHit(point.id, score, dict(point.payload)))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:max(0, limit)]

    def retrieve(self, name: str, ids: Sequence[int], with_vector: bool = True) -> List[VectorPoint]:
        with self._lock:
            collection = self._require(name)
            out = []
            for pid in ids:
                point = collection.get(pid)
                if point is None:
                    continue
                vector = list(point.vector) if with_vector and point.vector is not None else None
                out.append(VectorPoint(point.id, vector, dict(point.payload)))
            return out

    def delete(self, name: str, ids: Sequence[int]) -> None:
        with self._lock:
            collection = self._require(name)
            for pid in ids:
                collection.pop(pid, None)

    def points(self, name: str) -> List[VectorPoint]:
        with self._lock:
            return [
                VectorPoint(p.id, list(p.vector or []), dict(p.payload))
                for p in self._require(name).values()
            ]

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._collections.get(name, {}))

    def _require(self, name: str) -> Dict[int, VectorPoint]:
        collection = self._collections.get(name)
        if collection is None:
            raise KeyError(f"Unknown collection: {name}")
        return collection
