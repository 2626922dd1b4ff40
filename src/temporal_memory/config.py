"""Central configuration for the temporal memory subsystem.

All settings are loaded from environment variables prefixed with
``TEMPORAL_MEMORY_`` (with ``.env`` file support via *python-dotenv*).
Validation and type coercion are handled by ``pydantic-settings``.

Usage::

    from temporal_memory.config import get_settings

    settings = get_settings()
    print(settings.min_strength)

:func:`get_settings` creates the :class:`MemorySettings` singleton lazily so
that importing this module never triggers validation before the caller has had
a chance to load a ``.env`` file or populate the environment.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import ClassVar, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Canonical .env locations (checked in order of priority).
ENV_PATHS: list[str] = ["config/.env", ".env"]

ENV_PREFIX = "TEMPORAL_MEMORY_"

EMBEDDING_BACKENDS = {"hash", "ollama", "openrouter", "sbert", "sentence-transformers"}


class MemorySettings(BaseSettings):
    """Validated configuration for the memory store, its backends and its
    maintenance loop.

    Nothing is required: with no environment at all the system runs purely
    in-process (hash embeddings, local brute-force similarity search).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Vector backend
    # ------------------------------------------------------------------
    qdrant_url: Optional[str] = Field(
        default=None,
        description="Qdrant endpoint.  When unset only the local index is used.",
    )
    qdrant_collection: str = Field(default="temporal_episodes")
    qdrant_timeout_sec: float = Field(default=5.0, gt=0.0)
    backend_retry_base_sec: float = Field(
        default=5.0,
        gt=0.0,
        description="First backoff delay after a remote backend failure.",
    )
    backend_retry_max_sec: float = Field(default=300.0, gt=0.0)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------
    embedding_backend: str = Field(default="hash")
    embedding_dim: int = Field(
        default=128,
        ge=8,
        description=(
            "Vector dimension.  CANNOT be changed after vectors have been "
            "written to a remote collection."
        ),
    )
    embedding_model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2")
    embedding_timeout_sec: float = Field(default=10.0, gt=0.0)
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_embed_model: str = Field(default="nomic-embed-text")
    openrouter_api_key: Optional[str] = Field(default=None)
    openrouter_embed_model: str = Field(default="qwen/qwen3-embedding-8b")

    # ------------------------------------------------------------------
    # Decay model
    # ------------------------------------------------------------------
    min_strength: float = Field(default=0.01, gt=0.0, lt=1.0)
    recall_boost: float = Field(default=0.15, ge=0.0, le=1.0)
    dream_boost: float = Field(default=0.3, ge=0.0, le=1.0)
    acceleration_factor: float = Field(
        default=1.0,
        gt=0.0,
        description="Divides stage recall thresholds; >1 promotes faster.",
    )

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------
    max_episodes: int = Field(default=500_000, ge=1)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    auto_consolidation_enabled: bool = Field(default=False)
    auto_consolidation_interval_sec: float = Field(default=6 * 3600.0, ge=1.0)
    auto_prune_enabled: bool = Field(
        default=False,
        description="Remove forgotten episodes periodically on a background thread.",
    )
    prune_interval_sec: float = Field(default=600.0, ge=1.0)

    log_level: str = Field(default="INFO")

    @field_validator("embedding_backend", mode="before")
    @classmethod
    def _normalise_backend(cls, value: str) -> str:
        backend = str(value).strip().lower()
        if backend not in EMBEDDING_BACKENDS:
            raise ValueError(
                f"embedding_backend must be one of {sorted(EMBEDDING_BACKENDS)}, got {value!r}"
            )
        return backend

    @field_validator("qdrant_url", mode="before")
    @classmethod
    def _blank_url_is_none(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # ------------------------------------------------------------------
    # Repr safety -- redact secrets in logs / debug output
    # ------------------------------------------------------------------

    _SENSITIVE_FIELDS: ClassVar[set[str]] = {"openrouter_api_key"}

    def __repr__(self) -> str:
        fields = []
        for name in type(self).model_fields:
            val = getattr(self, name)
            if name in self._SENSITIVE_FIELDS:
                val = "***" if val else None
            fields.append(f"{name}={val!r}")
        return f"MemorySettings({', '.join(fields)})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_env_file() -> Path | None:
    """Return the first existing ``.env`` file from :data:`ENV_PATHS`."""
    for candidate in ENV_PATHS:
        p = Path(candidate)
        if p.is_file():
            return p
    return None


def load_settings(env_file: str | Path | None = None) -> MemorySettings:
    """Load ``.env`` values into the environment, then build fresh settings.

    Existing environment variables win over values from the file.
    """
    path = Path(env_file) if env_file is not None else find_env_file()
    if path is not None:
        load_dotenv(path)
        logger.debug("Loaded environment from %s", path)
    return MemorySettings()


@functools.lru_cache(maxsize=1)
def get_settings() -> MemorySettings:
    """Return the global :class:`MemorySettings` singleton."""
    return load_settings()
