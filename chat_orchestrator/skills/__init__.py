"""
Skills - the domain operations behind the built-in tools.

Skills take explicit user/workout ids (from the request context, never from
the model) and return SkillResult values instead of raising for expected
failures. shell/tools.py wraps them as model-facing tools and attaches the UI
actions.
"""

from chat_orchestrator.skills.coach_skills import CoachSkills
from chat_orchestrator.skills.workout_skills import SkillResult, WorkoutSkills

__all__ = ["CoachSkills", "SkillResult", "WorkoutSkills"]
