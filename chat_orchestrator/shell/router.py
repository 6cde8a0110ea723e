"""
Router - regex intent classification for chat messages.

Used by the rules provider to pick a tool without a model, and by the agent
for routing signals in logs. Patterns are checked in order; the first match
wins, so the more specific intents come before the generic ones and the
greeting comes last ("hey, create a back workout" is a workout request).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    CREATE_WORKOUT = "create_workout"
    START_WORKOUT = "start_workout"
    FINISH_WORKOUT = "finish_workout"
    LOG_SET = "log_set"
    SHOW_STATS = "show_stats"
    RECOMMEND = "recommend"
    HISTORY = "history"
    LOOKUP = "lookup"
    HIGHLIGHT = "highlight"
    NAVIGATE = "navigate"
    GREETING = "greeting"
    UNKNOWN = "unknown"


@dataclass
class RoutingResult:
    intent: Intent
    matched_rule: Optional[str] = None
    slots: Dict[str, Any] = field(default_factory=dict)
    signals: List[str] = field(default_factory=list)


MUSCLE_WORDS = {
    "back": "back", "lats": "back", "lat": "back",
    "chest": "chest", "pecs": "chest",
    "legs": "legs", "leg": "legs", "quads": "legs", "hamstrings": "legs", "glutes": "legs",
    "shoulders": "shoulders", "shoulder": "shoulders", "delts": "shoulders",
    "arms": "arms", "arm": "arms", "biceps": "arms", "triceps": "arms",
    "core": "core", "abs": "core",
}

PAGE_WORDS = {
    "home": "home", "chat": "chat", "workout": "workout", "log workout": "log-workout",
    "log-workout": "log-workout", "stats": "stats", "statistics": "stats", "feed": "feed",
    "profile": "profile", "settings": "settings", "notifications": "notifications",
    "discover": "discover", "recommendations": "recommendations", "templates": "templates",
}

_PAGES = "|".join(sorted((re.escape(p) for p in PAGE_WORDS), key=len, reverse=True))

PATTERNS: List[Tuple[re.Pattern, Intent, str]] = [
    # "log 8 reps of bench press at 100kg", "did 10 pull ups"
    (re.compile(
        r"^(?:log|did|record)\s+(?:a\s+set\s+of\s+)?(?P<reps>\d+)\s*(?:reps?|x)?\s+(?:of\s+)?"
        r"(?P<exercise>[a-z][a-z\s-]*?)(?:\s+(?:at|@|with)\s+(?P<weight>\d+(?:\.\d+)?)\s*(?P<unit>kg|lbs?)?)?[.!]?$",
        re.I,
    ), Intent.LOG_SET, "pattern:log_set"),
    # "bench press 8 @ 100kg"
    (re.compile(
        r"^(?P<exercise>[a-z][a-z\s-]*?)\s+(?P<reps>\d+)\s*(?:x|@)\s*(?P<weight>\d+(?:\.\d+)?)\s*(?P<unit>kg|lbs?)?$",
        re.I,
    ), Intent.LOG_SET, "pattern:log_shorthand"),
    (re.compile(
        r"\b(?:create|build|make|design|plan|generate|give\s+me)\s+(?:me\s+)?(?:a\s+|an\s+)?(?:new\s+)?"
        r"(?P<focus>[\w\s,&/-]*?)\s*(?:workout|session|routine)\b",
        re.I,
    ), Intent.CREATE_WORKOUT, "pattern:create_workout"),
    (re.compile(r"\b(?:start|begin)\s+(?:my\s+|the\s+)?(?:today.?s?\s+)?(?:workout|session|training)\b", re.I),
     Intent.START_WORKOUT, "pattern:start_workout"),
    (re.compile(r"\b(?:finish|end|complete|wrap\s+up)\s+(?:my\s+|the\s+)?(?:workout|session|training)\b", re.I),
     Intent.FINISH_WORKOUT, "pattern:finish_workout"),
    (re.compile(r"\b(?:stats|statistics|how\s+am\s+i\s+doing|my\s+progress)\b", re.I),
     Intent.SHOW_STATS, "pattern:stats"),
    (re.compile(r"\b(?:recommend|suggest|recommendations?|what\s+should\s+i\s+(?:train|do))\b", re.I),
     Intent.RECOMMEND, "pattern:recommend"),
    (re.compile(r"\b(?:history|past\s+workouts|recent\s+workouts|last\s+workouts?)\b", re.I),
     Intent.HISTORY, "pattern:history"),
    (re.compile(
        r"\b(?:what\s+is|what.?s|tell\s+me\s+about|how\s+do\s+i\s+do|look\s*up)\s+(?:a\s+|an\s+|the\s+)?"
        r"(?P<exercise>[a-z][a-z\s-]*?)\??$",
        re.I,
    ), Intent.LOOKUP, "pattern:lookup"),
    (re.compile(r"\b(?:highlight|where\s+is|point\s+to)\s+(?:the\s+)?(?P<element>[\w-]+)", re.I),
     Intent.HIGHLIGHT, "pattern:highlight"),
    (re.compile(rf"\b(?:go\s+to|open|take\s+me\s+to|navigate\s+to|show\s+me)\s+(?:the\s+|my\s+)?(?P<page>{_PAGES})\b", re.I),
     Intent.NAVIGATE, "pattern:navigate"),
    (re.compile(r"^\s*(?:hi|hey|hello|yo|hiya|howdy|good\s+(?:morning|afternoon|evening))\b", re.I),
     Intent.GREETING, "pattern:greeting"),
]


def extract_muscles(text: str) -> List[str]:
    found: List[str] = []
    for word in re.findall(r"[a-z]+", text.lower()):
        group = MUSCLE_WORDS.get(word)
        if group and group not in found:
            found.append(group)
    return found


def _signals(message: str) -> List[str]:
    lower = message.lower()
    signals = []
    if re.search(r"\b(my|mine|i|i'm|i've)\b", lower):
        signals.append("has_first_person")
    if re.search(r"\b(workout|session|training)\b", lower):
        signals.append("mentions_workout")
    if extract_muscles(lower):
        signals.append("mentions_muscle")
    if "?" in message:
        signals.append("is_question")
    return signals


def route_message(message: str) -> RoutingResult:
    text = (message or "").strip()
    signals = _signals(text)
    for pattern, intent, rule in PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        slots = {k: v for k, v in match.groupdict().items() if v}
        if intent is Intent.CREATE_WORKOUT:
            slots["muscle_groups"] = extract_muscles(slots.pop("focus", ""))
        elif intent is Intent.LOG_SET:
            slots["reps"] = int(slots["reps"])
            slots["exercise"] = slots["exercise"].strip()
            if "weight" in slots:
                slots["weight"] = float(slots["weight"])
            if "unit" in slots:
                slots["unit"] = "lbs" if slots["unit"].lower().startswith("lb") else "kg"
        elif intent is Intent.NAVIGATE:
            slots["page"] = PAGE_WORDS[slots["page"].lower()]
        elif intent is Intent.LOOKUP:
            slots["exercise"] = slots["exercise"].strip()
        logger.debug("Routed %r -> %s (%s)", text[:60], intent.value, rule)
        return RoutingResult(intent=intent, matched_rule=rule, slots=slots, signals=signals)
    return RoutingResult(intent=Intent.UNKNOWN, signals=signals)
