"""
Coach Skills - read-only lookups: exercise info, stats and recommendations.

The numbers here are simple placeholders (counts and sums over stored
workouts). They exist so the tools have something concrete to show.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from chat_orchestrator.catalog.matcher import ExerciseMatcher
from chat_orchestrator.libs.store import DocumentStore
from chat_orchestrator.models import now
from chat_orchestrator.skills.workout_skills import WORKOUTS_COLLECTION, SkillResult, compute_totals

logger = logging.getLogger(__name__)

PERIOD_SECONDS = {
    "week": 7 * 24 * 3600,
    "month": 30 * 24 * 3600,
    "all": None,
}

TRACKED_GROUPS = ("chest", "back", "legs", "shoulders", "arms", "core")
RECENT_WINDOW = 10


class CoachSkills:
    def __init__(self, store: DocumentStore, matcher: ExerciseMatcher):
        self.store = store
        self.matcher = matcher

    def lookup_exercise(self, name: str) -> SkillResult:
        match = self.matcher.find_best_match(name)
        if match is None:
            suggestions = [m.entry.name for m in self.matcher.find_matches(name, limit=3, min_confidence=0.4)]
            return SkillResult.fail(f"No exercise matches '{name}'", query=name, suggestions=suggestions)
        alternatives = [
            e.to_dict() for e in self.matcher.entries_for_muscles(match.entry.muscle_groups[:1])
            if e.id != match.entry.id
        ][:3]
        return SkillResult(
            True,
            f"{match.entry.name} ({', '.join(match.entry.muscle_groups)})",
            {"match": match.to_dict(), "alternatives": alternatives},
        )

    def get_stats(self, user_id: str, period: str = "week") -> SkillResult:
        workouts = self._completed(user_id, since=_since(period))
        sets = reps = 0
        volume = 0.0
        exercise_counts: Counter = Counter()
        for doc in workouts:
            totals = doc.get("totals") or compute_totals(doc)
            sets += totals.get("sets", 0)
            reps += totals.get("reps", 0)
            volume += totals.get("volume", 0.0)
            for ex in doc.get("exercises") or []:
                if ex.get("sets"):
                    exercise_counts[ex.get("name")] += 1
        stats = {
            "period": period,
            "workouts": len(workouts),
            "sets": sets,
            "reps": reps,
            "volume_kg": round(volume, 1),
            "top_exercises": [name for name, _ in exercise_counts.most_common(3)],
        }
        return SkillResult(True, f"{len(workouts)} workouts this {period}" if period != "all" else f"{len(workouts)} workouts", {"stats": stats})

    def get_recommendations(self, user_id: str, focus: Optional[str] = None, limit: int = 3) -> SkillResult:
        """Suggest exercises for the focus group, or for the least-trained groups lately."""
        if focus:
            groups = [focus.strip().lower()]
        else:
            trained: Counter = Counter()
            for doc in self._completed(user_id, limit=RECENT_WINDOW):
                for group in doc.get("muscle_groups") or []:
                    trained[group] += 1
            groups = sorted(TRACKED_GROUPS, key=lambda g: (trained[g], TRACKED_GROUPS.index(g)))[:2]

        recommendations: List[Dict[str, Any]] = []
        for group in groups:
            for entry in self.matcher.entries_for_muscles([group])[:limit]:
                recommendations.append({
                    "exercise_id": entry.id,
                    "name": entry.name,
                    "muscle_group": group,
                    "reason": f"Focus on {group}" if focus else f"{group.title()} has had the least work recently",
                })
        if not recommendations:
            return SkillResult.fail(f"No recommendations for '{focus}'", focus=focus)
        return SkillResult(True, f"Recommended focus: {', '.join(groups)}", {"focus": groups, "recommendations": recommendations})

    def _completed(self, user_id: str, since: Optional[float] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = [("user_id", "==", user_id), ("status", "==", "completed")]
        if since is not None:
            filters.append(("completed_at", ">=", since))
        docs = self.store.query(WORKOUTS_COLLECTION, filters=filters, order_by="completed_at", descending=True, limit=limit)
        return [doc.data for doc in docs]


def _since(period: str) -> Optional[float]:
    window = PERIOD_SECONDS.get(period)
    return None if window is None else now() - window
