"""
Chat agent instruction and per-request context block.

The instruction is static. The context block is rendered from the
ContextSnapshot of the current request and appended to it, so the model sees
who the user is, what they trained recently and what is on screen.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, List, Optional

from chat_orchestrator.models import ContextSnapshot, thaw

CHAT_INSTRUCTION = '''
## IDENTITY
You are the in-app training assistant of a fitness tracking app.
Direct, friendly, brief. The user is often mid-workout and reading on a phone.

## ABSOLUTE RULES
- NEVER ask for a user id. Tools know who the user is.
- NEVER invent numbers about the user's training. Use tool results or the context below.
- Only create a workout when the user asks for one. Greetings and questions do not create anything.

## TOOLS
- Use the smallest tool that does the job and call it silently.
- When a tool fails, read its hint and errors. Fix arguments and retry once, or tell the user plainly.
- When an exercise name cannot be matched, ask which exercise they meant and offer the suggestions.
- After a write tool succeeds, confirm in one short sentence. The app already shows the result.

## UI
- navigate_to and highlight_element drive the app. Only highlight elements listed as visible.
'''.strip()


def _fmt_time(ts: Optional[float]) -> str:
    if not ts:
        return "?"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def render_context(snapshot: Optional[ContextSnapshot]) -> str:
    if snapshot is None:
        return ""
    lines: List[str] = [f"today={_fmt_time(snapshot.captured_at)}"]

    if snapshot.profile:
        profile: Any = thaw(snapshot.profile)
        lines.append(f"profile={json.dumps(profile, default=str, sort_keys=True)[:1500]}")
    elif snapshot.source_failed("profile"):
        lines.append("profile=UNAVAILABLE (fetch failed, do not assume anything)")
    else:
        lines.append("profile=none")

    if snapshot.recent_workouts:
        lines.append("recent_workouts:")
        for workout in snapshot.recent_workouts:
            names = [ex.get("name") for ex in workout.get("exercises") or ()]
            lines.append(
                f"- {_fmt_time(workout.get('completed_at'))} {workout.get('name', 'Workout')}: {', '.join(n for n in names if n)}"
            )
    elif snapshot.source_failed("recent_workouts"):
        lines.append("recent_workouts=UNAVAILABLE (fetch failed)")
    else:
        lines.append("recent_workouts=none")

    if snapshot.current_page:
        lines.append(f"current_page={snapshot.current_page}")
    if snapshot.visible_ui_elements:
        lines.append(f"visible_elements={', '.join(sorted(snapshot.visible_ui_elements))}")
    if snapshot.available_actions:
        lines.append(f"available_actions={', '.join(sorted(snapshot.available_actions))}")
    return "\n".join(lines)


def build_system_instruction(snapshot: Optional[ContextSnapshot], base: str = CHAT_INSTRUCTION) -> str:
    context = render_context(snapshot)
    if not context:
        return base
    return f"{base}\n\n## CONTEXT\n{context}"
