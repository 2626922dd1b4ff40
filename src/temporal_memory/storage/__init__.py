"""Vector similarity backends."""

from .base import VectorBackend, VectorHit, VectorPoint, cosine_similarity, point_id
from .local import LocalVectorBackend
from .qdrant import QdrantVectorBackend

__all__ = [
    "VectorBackend",
    "VectorHit",
    "VectorPoint",
    "cosine_similarity",
    "point_id",
    "LocalVectorBackend",
    "QdrantVectorBackend",
]
