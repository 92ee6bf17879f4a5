"""
Term oracles: injected sources of "current" term lists (e.g. AI cliches).

The live source (a web search, a curated feed) sits outside the engine.
Evaluation stays deterministic and offline-testable because every live
oracle is paired with a pinned snapshot, and the orchestrator looks terms up
once per evaluation for a pinned date.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TermOracle(Protocol):
    def lookup(self, as_of: date) -> frozenset[str]:
        ...


def _normalize(terms: Iterable[str]) -> frozenset[str]:
    return frozenset(t.strip().lower() for t in terms if t and t.strip())


class StaticOracle:
    """Fixed term set, independent of date."""

    def __init__(self, terms: Iterable[str]):
        self._terms = _normalize(terms)

    def lookup(self, as_of: date) -> frozenset[str]:
        return self._terms


class SnapshotOracle:
    """
    Pinned snapshot read from a text file: one term per line, ``#`` comments.

    A ``# as-of: YYYY-MM-DD`` header records when the snapshot was taken.
    """

    def __init__(self, path: Path):
        self.path = path
        self.as_of: date | None = None
        terms: list[str] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if stripped.startswith("#"):
                header = stripped[1:].strip().lower()
                if header.startswith("as-of:"):
                    self.as_of = date.fromisoformat(header.split(":", 1)[1].strip())
                continue
            if stripped:
                terms.append(stripped)
        self._terms = _normalize(terms)

    def lookup(self, as_of: date) -> frozenset[str]:
        return self._terms


class CachedOracle:
    """
    Live oracle with per-date caching and snapshot fallback.

    If the live lookup raises, the pinned snapshot answers instead and the
    failure is logged; evaluation never depends on the network being up.
    """

    def __init__(self, live: TermOracle, fallback: TermOracle):
        self.live = live
        self.fallback = fallback
        self._cache: dict[date, frozenset[str]] = {}
        self._lock = threading.Lock()

    def lookup(self, as_of: date) -> frozenset[str]:
        with self._lock:
            cached = self._cache.get(as_of)
        if cached is not None:
            return cached
        try:
            terms = _normalize(self.live.lookup(as_of))
        except Exception as e:
            logger.warning("Live oracle lookup failed for %s (%s); using pinned snapshot", as_of, e)
            return self.fallback.lookup(as_of)
        with self._lock:
            self._cache[as_of] = terms
        return terms


def default_snapshot_path() -> Path:
    return Path(__file__).parent / "canons" / "ai-cliches.txt"
