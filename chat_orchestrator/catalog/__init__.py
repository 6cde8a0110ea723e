"""Static exercise catalog and fuzzy name resolution."""

from chat_orchestrator.catalog.exercises import EXERCISE_CATALOG
from chat_orchestrator.catalog.matcher import ExerciseMatcher, normalize_name

__all__ = ["EXERCISE_CATALOG", "ExerciseMatcher", "normalize_name"]
