from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any, Iterable, List, Optional, Protocol

import requests

from temporal_memory.config import MemorySettings
from temporal_memory.errors import EmbeddingError

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class Embedder(Protocol):
    dim: int

    def embed(self, text: str) -> List[float]:
        ...


def normalize(vector: Iterable[float]) -> List[float]:
    values = [float(v) for v in vector]
    norm = math.sqrt(sum(v * v for v in values))
    if norm == 0.0:
        return values
    return [v / norm for v in values]


def content_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(value)


def episode_text(content: Any, context: Iterable[str] = (), episode_type: Optional[str] = None) -> str:
    """Flatten an episode into the text that gets embedded."""
    parts = [content_text(content)]
    tags = " ".join(str(t) for t in context)
    if tags:
        parts.append(tags)
    if episode_type:
        parts.append(str(episode_type))
    return " | ".join(parts)


class HashEmbedder:
    """Deterministic feature-hashing embedder.

    Each token lands in a signed bucket chosen by its SHA-256 digest, so texts
    sharing vocabulary get a positive cosine without any model download.
    """

    def __init__(self, dim: int = 128) -> None:
        self.dim = dim

    def embed(self, text: str) -> List[float]:
        values = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            values[idx] += 1.0 if digest[4] & 1 else -1.0
        if not any(values):
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            raw = [b / 255.0 + 1e-3 for b in digest]
            values = (raw * ((self.dim // len(raw)) + 1))[:self.dim]
        return normalize(values)


class OllamaEmbedder:
    def __init__(self, base_url: str, model: str, dim: int, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self.dim = dim

    def embed(self, text: str) -> List[float]:
        url = f"{self._base_url}/api/embeddings"
        try:
            resp = requests.post(url, json={"model": self._model, "prompt": text}, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
            return _checked(normalize(data["embedding"]), self.dim)
        except (requests.RequestException, KeyError, ValueError) as exc:
            raise EmbeddingError(f"Ollama embedding failed: {exc}") from exc


class OpenRouterEmbedder:
    """Embedding via OpenRouter's /api/v1/embeddings endpoint."""

    def __init__(self, api_key: str, model: str, dim: int, timeout: float = 10.0) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._url = "https://openrouter.ai/api/v1/embeddings"
        self.dim = dim

    def embed(self, text: str) -> List[float]:
        try:
            resp = requests.post(
                self._url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={"input": text, "model": self._model, "dimensions": self.dim},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            return _checked(normalize(data["data"][0]["embedding"]), self.dim)
        except (requests.RequestException, KeyError, IndexError, ValueError) as exc:
            raise EmbeddingError(f"OpenRouter embedding failed: {exc}") from exc


class SentenceTransformerEmbedder:
    def __init__(self, model_name: str, device: str = "cpu") -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError("sentence-transformers is required for this embedder") from exc
        self._model = SentenceTransformer(model_name, device=device)
        self.dim = int(self._model.get_sentence_embedding_dimension())

    def embed(self, text: str) -> List[float]:
        vec = self._model.encode([text], normalize_embeddings=True)
        return vec[0].tolist()


def _checked(vector: List[float], dim: int) -> List[float]:
    if len(vector) != dim:
        raise EmbeddingError(f"Embedding dimension mismatch: expected {dim}, got {len(vector)}")
    return vector


def build_embedder(settings: MemorySettings) -> Embedder:
    backend = settings.embedding_backend
    if backend == "openrouter" and settings.openrouter_api_key:
        return OpenRouterEmbedder(
            settings.openrouter_api_key,
            settings.openrouter_embed_model,
            dim=settings.embedding_dim,
            timeout=settings.embedding_timeout_sec,
        )
    if backend == "ollama":
        return OllamaEmbedder(
            settings.ollama_base_url,
            settings.ollama_embed_model,
            dim=settings.embedding_dim,
            timeout=settings.embedding_timeout_sec,
        )
    if backend in {"sbert", "sentence-transformers"}:
        return SentenceTransformerEmbedder(settings.embedding_model)
    return HashEmbedder(dim=settings.embedding_dim)
