"""
Workout Skills - create, start, finish and log sets against stored workouts.

Workout document shape (collection "workouts"):
  user_id, name, status            "planned" | "active" | "completed"
  muscle_groups                    requested focus
  exercises[].exercise_id          catalog id
  exercises[].name                 display name
  exercises[].target_sets/reps     prescription
  exercises[].sets[]               {id, reps, weight, unit, logged_at}
  created_at / started_at / completed_at
  request_id                       tool call that created it
  totals                           {sets, reps, volume} once completed

Write paths are keyed by the tool call's request_id (workout id, set id), so a
replay that slips past the dispatcher cache still writes nothing twice.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from chat_orchestrator.catalog.matcher import ExerciseMatcher
from chat_orchestrator.libs.store import DocumentStore
from chat_orchestrator.models import ExerciseCatalogEntry, now

logger = logging.getLogger(__name__)

WORKOUTS_COLLECTION = "workouts"

FULL_BODY_GROUPS = ("chest", "back", "legs", "shoulders")
DEFAULT_TARGET_SETS = 3
DEFAULT_TARGET_REPS = "8-12"
LBS_PER_KG = 2.20462


@dataclass
class SkillResult:
    """Standardized result from a skill."""
    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            result: Dict[str, Any] = {"success": False, "error": self.error or "Unknown error"}
            if self.details:
                result["details"] = self.details
            return result
        result = {"success": True, "message": self.message}
        result.update(self.data)
        return result

    @classmethod
    def fail(cls, error: str, **details: Any) -> "SkillResult":
        return cls(success=False, error=error, details=details)


def workout_id_for(request_id: str) -> str:
    return f"wo_{request_id[:24]}"


def set_id_for(request_id: str) -> str:
    return f"set_{request_id[:16]}"


def _pick_round_robin(pools: Sequence[List[ExerciseCatalogEntry]], count: int) -> List[ExerciseCatalogEntry]:
    """Take one entry per pool in turn so every requested group is represented."""
    picked: List[ExerciseCatalogEntry] = []
    seen = set()
    depth = 0
    while len(picked) < count and any(depth < len(p) for p in pools):
        for pool in pools:
            if depth < len(pool) and pool[depth].id not in seen:
                picked.append(pool[depth])
                seen.add(pool[depth].id)
                if len(picked) >= count:
                    break
        depth += 1
    return picked


def _summary(workout_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "workout_id": workout_id,
        "name": doc.get("name"),
        "status": doc.get("status"),
        "exercises": [
            {
                "exercise_id": ex.get("exercise_id"),
                "name": ex.get("name"),
                "target_sets": ex.get("target_sets"),
                "target_reps": ex.get("target_reps"),
                "sets_logged": len(ex.get("sets") or []),
            }
            for ex in doc.get("exercises") or []
        ],
        "totals": doc.get("totals"),
    }


class WorkoutSkills:
    def __init__(self, store: DocumentStore, matcher: ExerciseMatcher):
        self.store = store
        self.matcher = matcher
        # Read-modify-write on one workout document must not interleave.
        self._lock = threading.Lock()

    # ------------------------------------------------------------------

    def create_workout(
        self,
        user_id: str,
        request_id: str,
        name: Optional[str] = None,
        muscle_groups: Sequence[str] = (),
        exercises: Sequence[str] = (),
        exercise_count: int = 4,
    ) -> SkillResult:
        workout_id = workout_id_for(request_id)
        existing = self.store.get(WORKOUTS_COLLECTION, workout_id)
        if existing is not None:
            return SkillResult(True, f"Workout '{existing.get('name')}' already created", _summary(workout_id, existing))

        chosen: List[ExerciseCatalogEntry] = []
        for raw in exercises:
            match = self.matcher.find_best_match(raw)
            if match is None:
                suggestions = [m.entry.name for m in self.matcher.find_matches(raw, limit=3, min_confidence=0.4)]
                return SkillResult.fail(f"Unknown exercise: {raw}", exercise=raw, suggestions=suggestions)
            if match.entry not in chosen:
                chosen.append(match.entry)

        groups = [g.strip().lower() for g in muscle_groups if g and g.strip()]
        if not chosen:
            pools = [self.matcher.entries_for_muscles([g]) for g in (groups or FULL_BODY_GROUPS)]
            chosen = _pick_round_robin(pools, exercise_count)
            if not chosen:
                return SkillResult.fail(
                    f"No exercises found for: {', '.join(groups)}",
                    muscle_groups=groups,
                )

        if not name:
            name = f"{' & '.join(g.title() for g in groups)} Workout" if groups else "Full Body Workout"

        doc = {
            "user_id": user_id,
            "name": name,
            "status": "planned",
            "muscle_groups": groups,
            "exercises": [
                {
                    "exercise_id": entry.id,
                    "name": entry.name,
                    "target_sets": DEFAULT_TARGET_SETS,
                    "target_reps": DEFAULT_TARGET_REPS,
                    "sets": [],
                }
                for entry in chosen
            ],
            "created_at": now(),
            "request_id": request_id,
        }
        self.store.set(WORKOUTS_COLLECTION, workout_id, doc)
        logger.info("Created workout %s (%d exercises) for user=%s", workout_id, len(chosen), user_id)
        return SkillResult(True, f"Created '{name}' with {len(chosen)} exercises", _summary(workout_id, doc))

    def start_workout(self, user_id: str, workout_id: Optional[str] = None) -> SkillResult:
        with self._lock:
            found = self._resolve(user_id, workout_id, status="planned")
            if found is None:
                return SkillResult.fail("No planned workout found. Create one first.", workout_id=workout_id)
            workout_id, doc = found
            if doc.get("status") == "active":
                return SkillResult(True, f"'{doc.get('name')}' is already in progress", _summary(workout_id, doc))
            if doc.get("status") == "completed":
                return SkillResult.fail("That workout is already completed.", workout_id=workout_id)
            fields = {"status": "active", "started_at": now()}
            self.store.update(WORKOUTS_COLLECTION, workout_id, fields)
            doc.update(fields)
        return SkillResult(True, f"Started '{doc.get('name')}'", _summary(workout_id, doc))

    def finish_workout(self, user_id: str, workout_id: Optional[str] = None) -> SkillResult:
        with self._lock:
            found = self._resolve(user_id, workout_id, status="active")
            if found is None:
                return SkillResult.fail("No active workout to finish.", workout_id=workout_id)
            workout_id, doc = found
            if doc.get("status") == "completed":
                return SkillResult(True, f"'{doc.get('name')}' was already finished", _summary(workout_id, doc))
            if doc.get("status") != "active":
                return SkillResult.fail("That workout has not been started.", workout_id=workout_id)
            fields = {"status": "completed", "completed_at": now(), "totals": compute_totals(doc)}
            self.store.update(WORKOUTS_COLLECTION, workout_id, fields)
            doc.update(fields)
        logger.info("Finished workout %s for user=%s", workout_id, user_id)
        return SkillResult(True, f"Finished '{doc.get('name')}'", _summary(workout_id, doc))

    def log_set(
        self,
        user_id: str,
        request_id: str,
        exercise: str,
        reps: int,
        weight: float = 0.0,
        unit: str = "kg",
        workout_id: Optional[str] = None,
    ) -> SkillResult:
        match = self.matcher.find_best_match(exercise)
        if match is None:
            suggestions = [m.entry.name for m in self.matcher.find_matches(exercise, limit=3, min_confidence=0.4)]
            return SkillResult.fail(
                f"Could not match exercise '{exercise}'. Ask the user which exercise they meant.",
                exercise=exercise,
                suggestions=suggestions,
            )

        set_id = set_id_for(request_id)
        with self._lock:
            found = self._resolve(user_id, workout_id, status="active")
            if found is None or found[1].get("status") != "active":
                return SkillResult.fail("No active workout. Start a workout before logging sets.")
            workout_id, doc = found
            exercises = doc.get("exercises") or []

            for ex in exercises:
                for s in ex.get("sets") or []:
                    if s.get("id") == set_id:
                        return SkillResult(True, "Set already logged", {"workout_id": workout_id, "set": s, "exercise": ex.get("name")})

            target = next((ex for ex in exercises if ex.get("exercise_id") == match.entry.id), None)
            if target is None:
                target = {
                    "exercise_id": match.entry.id,
                    "name": match.entry.name,
                    "target_sets": DEFAULT_TARGET_SETS,
                    "target_reps": DEFAULT_TARGET_REPS,
                    "sets": [],
                }
                exercises.append(target)
            logged = {"id": set_id, "reps": reps, "weight": weight, "unit": unit, "logged_at": now()}
            target.setdefault("sets", []).append(logged)
            self.store.update(WORKOUTS_COLLECTION, workout_id, {"exercises": exercises})

        return SkillResult(
            True,
            f"Logged {reps} x {weight:g}{unit} on {match.entry.name}",
            {
                "workout_id": workout_id,
                "exercise": match.entry.name,
                "exercise_id": match.entry.id,
                "match_confidence": round(match.confidence, 3),
                "set": logged,
                "set_number": len(target["sets"]),
            },
        )

    def get_workout_history(self, user_id: str, limit: int = 5) -> SkillResult:
        docs = self.store.query(
            WORKOUTS_COLLECTION,
            filters=[("user_id", "==", user_id), ("status", "==", "completed")],
            order_by="completed_at",
            descending=True,
            limit=limit,
        )
        workouts = [dict(_summary(doc.id, doc.data), completed_at=doc.data.get("completed_at")) for doc in docs]
        message = f"{len(workouts)} completed workouts" if workouts else "No completed workouts yet"
        return SkillResult(True, message, {"workouts": workouts})

    # ------------------------------------------------------------------

    def _resolve(self, user_id: str, workout_id: Optional[str], status: str) -> Optional[tuple]:
        """(workout_id, doc) for an explicit id owned by the user, else the newest workout in `status`."""
        if workout_id:
            doc = self.store.get(WORKOUTS_COLLECTION, workout_id)
            if doc is None or doc.get("user_id") != user_id:
                return None
            return workout_id, doc
        docs = self.store.query(
            WORKOUTS_COLLECTION,
            filters=[("user_id", "==", user_id), ("status", "==", status)],
            order_by="created_at",
            descending=True,
            limit=1,
        )
        if not docs:
            return None
        return docs[0].id, docs[0].data


def compute_totals(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Placeholder totals: sets, reps and volume (sum of weight x reps, in kg).
    Not a training-load model.
    """
    sets = reps = 0
    volume = 0.0
    for ex in doc.get("exercises") or []:
        for s in ex.get("sets") or []:
            sets += 1
            reps += int(s.get("reps") or 0)
            weight = float(s.get("weight") or 0.0)
            if s.get("unit") == "lbs":
                weight = weight / LBS_PER_KG
            volume += weight * int(s.get("reps") or 0)
    return {"sets": sets, "reps": reps, "volume": round(volume, 1)}
