"""
ExerciseMatcher - resolve free-text exercise names against the catalog.

Matching order:
1. Exact normalized name       -> confidence 1.0, match_type "exact"
2. Exact normalized alias      -> confidence 1.0, match_type "alias"
3. SequenceMatcher ratio over name and aliases, best per entry; the top entry is
   returned only when it clears min_confidence. Ties keep catalog order.

Below the threshold nothing is returned. A wrong silent match would log a set
against the wrong exercise.
"""

from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from chat_orchestrator.catalog.exercises import EXERCISE_CATALOG
from chat_orchestrator.models import ExerciseCatalogEntry, MatchResult

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7

_STRIP_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"\s+")


def normalize_name(value: str) -> str:
    """'Pull Up', ' pull-up ' and 'Pull-Up!' all become 'pull-up'."""
    text = _STRIP_RE.sub("", (value or "").strip().lower())
    return _SPACE_RE.sub(" ", text).strip().replace(" ", "-")


def similarity(a: str, b: str) -> float:
    """difflib ratio in 0..1; two empty strings count as identical."""
    return SequenceMatcher(None, a, b).ratio()


class ExerciseMatcher:
    def __init__(
        self,
        catalog: Sequence[ExerciseCatalogEntry] = EXERCISE_CATALOG,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        self.catalog: Tuple[ExerciseCatalogEntry, ...] = tuple(catalog)
        self.min_confidence = min_confidence
        # Precomputed normalized keys; the catalog never changes after construction.
        self._names: List[str] = [normalize_name(e.name) for e in self.catalog]
        self._aliases: List[Tuple[str, ...]] = [
            tuple(normalize_name(a) for a in e.aliases) for e in self.catalog
        ]
        self._by_name: Dict[str, int] = {}
        self._by_alias: Dict[str, int] = {}
        for index, name in enumerate(self._names):
            self._by_name.setdefault(name, index)
        for index, aliases in enumerate(self._aliases):
            for alias in aliases:
                self._by_alias.setdefault(alias, index)

    def find_best_match(self, free_text: str) -> Optional[MatchResult]:
        query = normalize_name(free_text)
        if not query:
            return None

        exact = self._exact(query)
        if exact is not None:
            return exact

        ranked = self._rank(query)
        if not ranked:
            logger.debug("No exercise match for %r", free_text)
            return None
        return ranked[0]

    def find_matches(
        self, free_text: str, limit: int = 5, min_confidence: Optional[float] = None
    ) -> List[MatchResult]:
        """Ranked candidates above the threshold (or `min_confidence`), best first."""
        query = normalize_name(free_text)
        if not query or limit <= 0:
            return []
        exact = self._exact(query)
        ranked = self._rank(query, min_confidence)
        if exact is not None:
            ranked = [exact] + [r for r in ranked if r.entry.id != exact.entry.id]
        return ranked[:limit]

    def entries_for_muscles(self, muscles: Iterable[str]) -> List[ExerciseCatalogEntry]:
        wanted = {normalize_name(m) for m in muscles if m}
        if not wanted:
            return []
        return [
            entry for entry in self.catalog
            if wanted.intersection(normalize_name(m) for m in entry.muscle_groups)
        ]

    def get(self, exercise_id: str) -> Optional[ExerciseCatalogEntry]:
        for entry in self.catalog:
            if entry.id == exercise_id:
                return entry
        return None

    # ------------------------------------------------------------------

    def _exact(self, query: str) -> Optional[MatchResult]:
        index = self._by_name.get(query)
        if index is not None:
            return MatchResult(entry=self.catalog[index], confidence=1.0, match_type="exact")
        index = self._by_alias.get(query)
        if index is not None:
            return MatchResult(entry=self.catalog[index], confidence=1.0, match_type="alias")
        return None

    def _rank(self, query: str, min_confidence: Optional[float] = None) -> List[MatchResult]:
        threshold = self.min_confidence if min_confidence is None else min_confidence
        scored: List[Tuple[float, int]] = []
        for index, name in enumerate(self._names):
            best = max(
                [similarity(query, name)] + [similarity(query, a) for a in self._aliases[index]]
            )
            if best >= threshold:
                scored.append((best, index))
        # Stable sort on score only, so equal scores keep catalog order.
        scored.sort(key=lambda item: -item[0])
        return [
            MatchResult(entry=self.catalog[index], confidence=score, match_type="fuzzy")
            for score, index in scored
        ]
