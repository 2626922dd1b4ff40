"""Asyncio facade over the temporal memory system.

All synchronous internals run in ``asyncio.to_thread()`` so that embedding
and vector-backend I/O never block the event loop.

Usage::

    engine = AsyncTemporalMemory(settings)
    await engine.start()
    episode = await engine.store("met Ada at the lab", context=["ada", "lab"])
    hits = await engine.search("Ada")
    await engine.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from temporal_memory.config import MemorySettings
from temporal_memory.errors import ConsolidationInProgressError
from temporal_memory.memory.associative import SearchResult
from temporal_memory.memory.dreams import ConsolidationReport, DreamMode
from temporal_memory.memory.episodes import Episode
from temporal_memory.memory.system import TemporalMemorySystem

log = logging.getLogger(__name__)


class AsyncTemporalMemory:
    """Async facade over :class:`TemporalMemorySystem`.

    Degrade-and-continue calls log a warning and return ``None`` on failure.
    ``dream_consolidate`` re-raises :class:`ConsolidationInProgressError` so
    callers can tell a busy consolidator from a broken one.
    """

    def __init__(self, settings: Optional[MemorySettings] = None,
                 system: Optional[TemporalMemorySystem] = None) -> None:
        self._settings = settings
        self._system = system
        self._running = False

    async def start(self, auto_consolidate: bool = False) -> bool:
        """Initialise the memory system.  Returns True on success."""
        try:
            if self._system is None:
                self._system = await asyncio.to_thread(self._create_system, self._settings)
            await asyncio.to_thread(self._system._ensure_initialized)
            if auto_consolidate:
                self._system.start_auto_consolidation()
            self._running = True
            log.info("Temporal memory engine started")
            return True
        except Exception as exc:
            log.warning("Temporal memory engine start failed: %s", exc)
            self._running = False
            return False

    @staticmethod
    def _create_system(settings: Optional[MemorySettings]) -> TemporalMemorySystem:
        return TemporalMemorySystem(settings)

    async def stop(self) -> None:
        if self._system is not None:
            self._system.close()
        self._running = False
        log.info("Temporal memory engine stopped")

    @property
    def is_running(self) -> bool:
        return self._running and self._system is not None

    @property
    def system(self) -> Optional[TemporalMemorySystem]:
        return self._system

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def store(self, content: Any, **kwargs: Any) -> Optional[Episode]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.store, content, **kwargs)
        except Exception as exc:
            log.warning("Temporal memory store failed: %s", exc)
            return None

    async def recall(self, **kwargs: Any) -> Optional[List[Episode]]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.recall, **kwargs)
        except Exception as exc:
            log.warning("Temporal memory recall failed: %s", exc)
            return None

    async def search(self, query: Any, **kwargs: Any) -> Optional[List[SearchResult]]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.search, query, **kwargs)
        except Exception as exc:
            log.warning("Temporal memory search failed: %s", exc)
            return None

    async def chain_search(self, query: Any, depth: int = 2,
                           branch_factor: int = 3) -> Optional[List[SearchResult]]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.chain_search, query, depth, branch_factor)
        except Exception as exc:
            log.warning("Temporal memory chain_search failed: %s", exc)
            return None

    async def dream_consolidate(self, mode: DreamMode | str = DreamMode.STANDARD) -> Optional[ConsolidationReport]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.dream_consolidate, mode)
        except ConsolidationInProgressError:
            raise
        except Exception as exc:
            log.warning("Temporal memory consolidation failed: %s", exc)
            return None

    async def export_state(self) -> Optional[Dict[str, Any]]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.export_state)
        except Exception as exc:
            log.warning("Temporal memory export_state failed: %s", exc)
            return None

    async def import_state(self, state: Dict[str, Any]) -> Optional[int]:
        if not self.is_running:
            return None
        try:
            return await asyncio.to_thread(self._system.import_state, state)
        except Exception as exc:
            log.warning("Temporal memory import_state failed: %s", exc)
            return None
