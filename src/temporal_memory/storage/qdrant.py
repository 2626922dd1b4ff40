from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client import models as qmodels

from temporal_memory.errors import BackendUnavailableError
from temporal_memory.storage.base import VectorHit, VectorPoint

logger = logging.getLogger(__name__)

_DISTANCES = {
    "cosine": qmodels.Distance.COSINE,
    "dot": qmodels.Distance.DOT,
    "euclid": qmodels.Distance.EUCLID,
}


class QdrantVectorBackend:
    """Vector backend over a Qdrant server.

    Every client error is re-raised as :class:`BackendUnavailableError` so
    callers can fall back without knowing about Qdrant's exception types.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[QdrantClient] = None) -> None:
        self._url = url
        self._client = client or QdrantClient(url=url, timeout=int(max(1, timeout)))

    @property
    def client(self) -> QdrantClient:
        return self._client

    def ensure_collection(self, name: str, dim: int, metric: str = "cosine") -> None:
        distance = _DISTANCES.get(metric.lower())
        if distance is None:
            raise ValueError(f"Unsupported distance metric: {metric!r}")
        try:
            existing = [c.name for c in self._client.get_collections().collections]
            if name in existing:
                return
            self._client.create_collection(
                collection_name=name,
                vectors_config=qmodels.VectorParams(size=dim, distance=distance),
            )
            logger.info("Created Qdrant collection: %s (dims=%d)", name, dim)
        except Exception as exc:
            raise BackendUnavailableError(f"Qdrant ensure_collection failed: {exc}") from exc

    def upsert(self, name: str, points: Sequence[VectorPoint]) -> None:
        if not points:
            return
        structs = [
            qmodels.PointStruct(id=p.id, vector=list(p.vector or []), payload=dict(p.payload))
            for p in points
        ]
        try:
            self._client.upsert(collection_name=name, points=structs)
        except Exception as exc:
            raise BackendUnavailableError(f"Qdrant upsert failed: {exc}") from exc

    def search(self, name: str, vector: Sequence[float], limit: int,
               score_threshold: float = 0.0) -> List[VectorHit]:
        try:
            response = self._client.query_points(
                collection_name=name,
                query=list(vector),
                limit=limit,
                score_threshold=score_threshold,
                with_payload=True,
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Qdrant search failed: {exc}") from exc
        return [
            VectorHit(id=int(p.id), score=float(p.score), payload=dict(p.payload or {}))
            for p in response.points
        ]

    def retrieve(self, name: str, ids: Sequence[int], with_vector: bool = True) -> List[VectorPoint]:
        try:
            records = self._client.retrieve(
                collection_name=name,
                ids=list(ids),
                with_payload=True,
                with_vectors=with_vector,
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Qdrant retrieve failed: {exc}") from exc
        return [
            VectorPoint(id=int(r.id), vector=_plain_vector(r.vector), payload=dict(r.payload or {}))
            for r in records
        ]

    def delete(self, name: str, ids: Sequence[int]) -> None:
        if not ids:
            return
        try:
            self._client.delete(
                collection_name=name,
                points_selector=qmodels.PointIdsList(points=list(ids)),
            )
        except Exception as exc:
            raise BackendUnavailableError(f"Qdrant delete failed: {exc}") from exc


def _plain_vector(vector: Any) -> Optional[List[float]]:
    if vector is None:
        return None
    if isinstance(vector, dict):
        # Named vectors: take the unnamed/default entry if present.
        vector = vector.get("", next(iter(vector.values()), None))
        if vector is None:
            return None
    return [float(v) for v in vector]
