"""
Canonical exercise catalog.

Read-only at runtime and shared between all sessions without locking.
Declaration order matters: the matcher breaks score ties by position here.
"""

from __future__ import annotations

from typing import Tuple

from chat_orchestrator.models import ExerciseCatalogEntry


def _entry(
    id: str,
    name: str,
    aliases: Tuple[str, ...] = (),
    muscles: Tuple[str, ...] = (),
    equipment: str = "bodyweight",
) -> ExerciseCatalogEntry:
    return ExerciseCatalogEntry(id=id, name=name, aliases=aliases, muscle_groups=muscles, equipment=equipment)


EXERCISE_CATALOG: Tuple[ExerciseCatalogEntry, ...] = (
    # Back
    _entry("pull-up", "Pull Up", ("pullup", "pull ups", "chin up bar pull"), ("back", "lats", "biceps")),
    _entry("chin-up", "Chin Up", ("chinup", "chin ups"), ("back", "lats", "biceps")),
    _entry("barbell-row", "Barbell Row", ("bent over row", "bb row", "pendlay row"), ("back", "lats", "rear delts"), "barbell"),
    _entry("lat-pulldown", "Lat Pulldown", ("pulldown", "lat pull down"), ("back", "lats"), "cable"),
    _entry("seated-cable-row", "Seated Cable Row", ("cable row", "seated row"), ("back", "rhomboids"), "cable"),
    _entry("deadlift", "Deadlift", ("conventional deadlift", "dl"), ("back", "hamstrings", "glutes"), "barbell"),
    _entry("dumbbell-row", "Dumbbell Row", ("one arm row", "db row"), ("back", "lats"), "dumbbell"),
    _entry("face-pull", "Face Pull", ("face pulls",), ("rear delts", "back"), "cable"),
    # Chest
    _entry("bench-press", "Bench Press", ("barbell bench", "flat bench", "bench"), ("chest", "triceps", "front delts"), "barbell"),
    _entry("incline-dumbbell-press", "Incline Dumbbell Press", ("incline press", "incline db press"), ("chest", "front delts"), "dumbbell"),
    _entry("push-up", "Push Up", ("pushup", "press up"), ("chest", "triceps")),
    _entry("dip", "Dip", ("dips", "parallel bar dip"), ("chest", "triceps")),
    _entry("cable-fly", "Cable Fly", ("cable flye", "cable crossover"), ("chest",), "cable"),
    # Legs
    _entry("squat", "Squat", ("back squat", "barbell squat"), ("legs", "quads", "glutes"), "barbell"),
    _entry("front-squat", "Front Squat", (), ("legs", "quads"), "barbell"),
    _entry("romanian-deadlift", "Romanian Deadlift", ("rdl", "stiff leg deadlift"), ("legs", "hamstrings", "glutes"), "barbell"),
    _entry("leg-press", "Leg Press", (), ("legs", "quads", "glutes"), "machine"),
    _entry("walking-lunge", "Walking Lunge", ("lunges", "lunge"), ("legs", "quads", "glutes"), "dumbbell"),
    _entry("leg-curl", "Leg Curl", ("hamstring curl", "lying leg curl"), ("legs", "hamstrings"), "machine"),
    _entry("calf-raise", "Calf Raise", ("calf raises", "standing calf raise"), ("legs", "calves"), "machine"),
    # Shoulders
    _entry("overhead-press", "Overhead Press", ("ohp", "military press", "shoulder press"), ("shoulders", "front delts", "triceps"), "barbell"),
    _entry("lateral-raise", "Lateral Raise", ("side raise", "lateral raises"), ("shoulders", "side delts"), "dumbbell"),
    # Arms
    _entry("bicep-curl", "Bicep Curl", ("biceps curl", "curl", "dumbbell curl"), ("arms", "biceps"), "dumbbell"),
    _entry("hammer-curl", "Hammer Curl", ("hammer curls",), ("arms", "biceps", "forearms"), "dumbbell"),
    _entry("tricep-pushdown", "Tricep Pushdown", ("triceps pushdown", "rope pushdown"), ("arms", "triceps"), "cable"),
    _entry("skull-crusher", "Skull Crusher", ("lying tricep extension",), ("arms", "triceps"), "barbell"),
    # Core
    _entry("plank", "Plank", ("front plank",), ("core", "abs")),
    _entry("hanging-leg-raise", "Hanging Leg Raise", ("leg raise", "hanging knee raise"), ("core", "abs")),
    _entry("russian-twist", "Russian Twist", (), ("core", "obliques")),
)
