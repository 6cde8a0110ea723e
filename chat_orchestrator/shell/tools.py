"""
Built-in tools - model-facing wrappers around the skills.

Every tool is (name, pydantic argument model, handler, description) registered
on a ToolDispatcher by register_builtin_tools(). Handlers:
- never take user_id from the model; it comes from ToolContext / RequestContext
- raise ToolFailure for expected failures so the model sees the reason
- attach the UI actions (ActionSpec) the app should perform

Pages the UI can navigate to are listed in NAVIGATION_PAGES.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chat_orchestrator.errors import ToolFailure
from chat_orchestrator.models import ActionType
from chat_orchestrator.shell.context import get_request_context
from chat_orchestrator.shell.dispatcher import ActionSpec, ToolContext, ToolDispatcher, ToolOutcome
from chat_orchestrator.skills.coach_skills import CoachSkills
from chat_orchestrator.skills.workout_skills import SkillResult, WorkoutSkills

logger = logging.getLogger(__name__)

NAVIGATION_PAGES = (
    "home", "chat", "workout", "log-workout", "stats", "feed", "profile",
    "settings", "notifications", "discover", "recommendations", "templates",
)
Page = Literal[
    "home", "chat", "workout", "log-workout", "stats", "feed", "profile",
    "settings", "notifications", "discover", "recommendations", "templates",
]


# =============================================================================
# ARGUMENT SCHEMAS
# =============================================================================

class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class CreateWorkoutArgs(_Args):
    name: Optional[str] = Field(default=None, max_length=80, description="Workout title")
    muscle_groups: List[str] = Field(default_factory=list, description="e.g. ['back', 'biceps']")
    exercises: List[str] = Field(default_factory=list, max_length=12, description="Exercise names to include")
    exercise_count: int = Field(default=4, ge=1, le=12)

    @field_validator("muscle_groups")
    @classmethod
    def _lower(cls, value: List[str]) -> List[str]:
        return [v.strip().lower() for v in value if v and v.strip()]


class StartWorkoutArgs(_Args):
    workout_id: Optional[str] = Field(default=None, description="Defaults to the newest planned workout")


class FinishWorkoutArgs(_Args):
    workout_id: Optional[str] = Field(default=None, description="Defaults to the active workout")


class LogSetArgs(_Args):
    exercise: str = Field(min_length=1, description="Exercise name as the user said it")
    reps: int = Field(ge=1, le=100)
    weight: float = Field(default=0.0, ge=0.0, le=1000.0)
    unit: Literal["kg", "lbs"] = "kg"
    workout_id: Optional[str] = None


class NavigateArgs(_Args):
    page: Page
    params: Dict[str, str] = Field(default_factory=dict)


class HighlightArgs(_Args):
    element_id: str = Field(min_length=1)
    duration_ms: int = Field(default=3000, ge=100, le=30000)


class LookupExerciseArgs(_Args):
    name: str = Field(min_length=1)


class WorkoutHistoryArgs(_Args):
    limit: int = Field(default=5, ge=1, le=20)


class ShowStatsArgs(_Args):
    period: Literal["week", "month", "all"] = "week"


class RecommendationsArgs(_Args):
    focus: Optional[str] = Field(default=None, description="Muscle group to focus on")


# =============================================================================
# HANDLERS
# =============================================================================

def _user_id(ctx: ToolContext) -> str:
    if ctx.user_id:
        return ctx.user_id
    request = get_request_context()
    if request is None:
        raise ToolFailure("No user in context")
    return request.user_id


def _unwrap(result: SkillResult) -> Dict:
    if not result.success:
        raise ToolFailure(result.error or "Tool failed", result.details)
    return result.to_dict()


def _notify(message: str, level: str = "success") -> ActionSpec:
    return ActionSpec(ActionType.SHOW_NOTIFICATION.value, {"message": message, "level": level})


class BuiltinTools:
    def __init__(self, workouts: WorkoutSkills, coach: CoachSkills):
        self.workouts = workouts
        self.coach = coach

    def create_workout(self, args: CreateWorkoutArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.workouts.create_workout(
            _user_id(ctx),
            ctx.request_id,
            name=args.name,
            muscle_groups=args.muscle_groups,
            exercises=args.exercises,
            exercise_count=args.exercise_count,
        ))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.UPDATE_DATA.value, {"entity": "workout", "data": payload}),
            ActionSpec(ActionType.NAVIGATE.value, {"page": "workout", "params": {"workoutId": payload["workout_id"]}}),
            _notify(payload["message"]),
        ])

    def start_workout(self, args: StartWorkoutArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.workouts.start_workout(_user_id(ctx), args.workout_id))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.TRIGGER_ACTION.value, {"action": "start-workout", "workoutId": payload["workout_id"]}),
            ActionSpec(ActionType.NAVIGATE.value, {"page": "log-workout", "params": {"workoutId": payload["workout_id"]}}),
        ])

    def finish_workout(self, args: FinishWorkoutArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.workouts.finish_workout(_user_id(ctx), args.workout_id))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.UPDATE_DATA.value, {"entity": "workout", "data": payload}),
            _notify(payload["message"]),
        ])

    def log_set(self, args: LogSetArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.workouts.log_set(
            _user_id(ctx),
            ctx.request_id,
            exercise=args.exercise,
            reps=args.reps,
            weight=args.weight,
            unit=args.unit,
            workout_id=args.workout_id,
        ))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.UPDATE_DATA.value, {"entity": "set", "data": payload}),
        ])

    def navigate_to(self, args: NavigateArgs, ctx: ToolContext) -> ToolOutcome:
        return ToolOutcome(
            {"success": True, "message": f"Opening {args.page}", "page": args.page},
            [ActionSpec(ActionType.NAVIGATE.value, {"page": args.page, "params": dict(args.params)})],
        )

    def highlight_element(self, args: HighlightArgs, ctx: ToolContext) -> ToolOutcome:
        visible = ctx.snapshot.visible_ui_elements if ctx.snapshot is not None else frozenset()
        if visible and args.element_id not in visible:
            raise ToolFailure(
                f"Element '{args.element_id}' is not on screen",
                {"visible_elements": sorted(visible)},
            )
        return ToolOutcome(
            {"success": True, "message": f"Highlighted {args.element_id}"},
            [ActionSpec(ActionType.HIGHLIGHT.value, {"elementId": args.element_id, "durationMs": args.duration_ms})],
        )

    def lookup_exercise(self, args: LookupExerciseArgs, ctx: ToolContext) -> Dict:
        return _unwrap(self.coach.lookup_exercise(args.name))

    def get_workout_history(self, args: WorkoutHistoryArgs, ctx: ToolContext) -> Dict:
        return _unwrap(self.workouts.get_workout_history(_user_id(ctx), args.limit))

    def show_stats(self, args: ShowStatsArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.coach.get_stats(_user_id(ctx), args.period))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.NAVIGATE.value, {"page": "stats", "params": {"period": args.period}}),
            ActionSpec(ActionType.UPDATE_DATA.value, {"entity": "stats", "data": payload["stats"]}),
        ])

    def get_recommendations(self, args: RecommendationsArgs, ctx: ToolContext) -> ToolOutcome:
        payload = _unwrap(self.coach.get_recommendations(_user_id(ctx), args.focus))
        return ToolOutcome(payload, [
            ActionSpec(ActionType.UPDATE_DATA.value, {"entity": "recommendations", "data": payload["recommendations"]}),
        ])


def register_builtin_tools(dispatcher: ToolDispatcher, tools: BuiltinTools) -> None:
    dispatcher.register_tool(
        "create_workout", CreateWorkoutArgs, tools.create_workout,
        "Create a planned workout from muscle groups and/or named exercises.",
    )
    dispatcher.register_tool(
        "start_workout", StartWorkoutArgs, tools.start_workout,
        "Start a planned workout (the newest one when no id is given).",
    )
    dispatcher.register_tool(
        "finish_workout", FinishWorkoutArgs, tools.finish_workout,
        "Finish the active workout and record its totals.",
    )
    dispatcher.register_tool(
        "log_set", LogSetArgs, tools.log_set,
        "Log one set (reps, weight) for an exercise in the active workout.",
    )
    dispatcher.register_tool(
        "navigate_to", NavigateArgs, tools.navigate_to,
        f"Navigate the app to a page: {', '.join(NAVIGATION_PAGES)}.",
    )
    dispatcher.register_tool(
        "highlight_element", HighlightArgs, tools.highlight_element,
        "Briefly highlight a visible UI element by id.",
    )
    dispatcher.register_tool(
        "lookup_exercise", LookupExerciseArgs, tools.lookup_exercise,
        "Resolve an exercise name against the catalog.",
    )
    dispatcher.register_tool(
        "get_workout_history", WorkoutHistoryArgs, tools.get_workout_history,
        "List the user's most recent completed workouts.",
    )
    dispatcher.register_tool(
        "show_stats", ShowStatsArgs, tools.show_stats,
        "Show training stats for a period.",
    )
    dispatcher.register_tool(
        "get_recommendations", RecommendationsArgs, tools.get_recommendations,
        "Recommend exercises, optionally for one muscle group.",
    )
    logger.info("Registered %d built-in tools", len(dispatcher.tool_names()))
