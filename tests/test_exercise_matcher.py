"""
Exercise matcher tests: exact, alias, fuzzy, threshold and tie order.

Usage:
    python3 -m pytest tests/test_exercise_matcher.py -v
"""

from __future__ import annotations

import pytest


# ============================================================================
# 1. NORMALIZATION
# ============================================================================

class TestNormalize:

    def test_case_punctuation_and_spacing(self):
        from chat_orchestrator.catalog.matcher import normalize_name
        assert normalize_name("Pull Up") == "pull-up"
        assert normalize_name("  pull-up ") == "pull-up"
        assert normalize_name("Pull-Up!") == "pull-up"
        assert normalize_name("lat   pull  down") == "lat-pull-down"

    def test_empty(self):
        from chat_orchestrator.catalog.matcher import normalize_name
        assert normalize_name("") == ""
        assert normalize_name(None) == ""

    def test_similarity_bounds(self):
        from chat_orchestrator.catalog.matcher import similarity
        assert similarity("squat", "squat") == 1.0
        assert similarity("abc", "xyz") == 0.0
        assert similarity("", "") == 1.0

    def test_similarity_is_difflib_ratio(self):
        from chat_orchestrator.catalog.matcher import similarity
        # 2 * 10 matched chars / 21 total
        assert similarity("bench-pres", "bench-press") == pytest.approx(20 / 21)


# ============================================================================
# 2. BEST MATCH
# ============================================================================

class TestFindBestMatch:

    def test_exact_name(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        match = ExerciseMatcher().find_best_match("pull-up")
        assert match is not None
        assert match.entry.name == "Pull Up"
        assert match.confidence == 1.0
        assert match.match_type == "exact"

    def test_alias(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        match = ExerciseMatcher().find_best_match("RDL")
        assert match.entry.id == "romanian-deadlift"
        assert match.match_type == "alias"
        assert match.confidence == 1.0

    def test_fuzzy_typo(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        match = ExerciseMatcher().find_best_match("bench pres")
        assert match.entry.id == "bench-press"
        assert match.match_type == "fuzzy"
        assert 0.7 <= match.confidence < 1.0

    def test_gibberish_returns_none(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        assert ExerciseMatcher().find_best_match("xyzzy") is None

    def test_blank_returns_none(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        assert ExerciseMatcher().find_best_match("   ") is None

    def test_threshold_is_configurable(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        assert ExerciseMatcher(min_confidence=0.97).find_best_match("bench pres") is None

    def test_ties_keep_catalog_order(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        from chat_orchestrator.models import ExerciseCatalogEntry
        a = ExerciseCatalogEntry(id="a", name="Alpha Row")
        b = ExerciseCatalogEntry(id="b", name="Alpha Roe")
        assert ExerciseMatcher([a, b]).find_best_match("alpha ro").entry.id == "a"
        assert ExerciseMatcher([b, a]).find_best_match("alpha ro").entry.id == "b"


# ============================================================================
# 3. CANDIDATES & LOOKUPS
# ============================================================================

class TestFindMatches:

    def test_exact_first_then_ranked(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        matches = ExerciseMatcher().find_matches("squat", limit=3, min_confidence=0.4)
        assert matches[0].entry.id == "squat"
        assert len({m.entry.id for m in matches}) == len(matches)
        scores = [m.confidence for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_limit(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        assert len(ExerciseMatcher().find_matches("curl", limit=2, min_confidence=0.1)) == 2
        assert ExerciseMatcher().find_matches("curl", limit=0) == []

    def test_entries_for_muscles(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        back = ExerciseMatcher().entries_for_muscles(["back"])
        assert back[0].id == "pull-up"
        assert all("back" in e.muscle_groups for e in back)
        assert ExerciseMatcher().entries_for_muscles([]) == []

    def test_get(self):
        from chat_orchestrator.catalog import ExerciseMatcher
        assert ExerciseMatcher().get("deadlift").name == "Deadlift"
        assert ExerciseMatcher().get("nope") is None

    def test_catalog_ids_unique(self):
        from chat_orchestrator.catalog import EXERCISE_CATALOG
        ids = [e.id for e in EXERCISE_CATALOG]
        assert len(ids) == len(set(ids))
