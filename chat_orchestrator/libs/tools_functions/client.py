from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..tools_common.http import HttpClient


@dataclass
class FunctionsClient:
    """Read-only client for the app's user and workout functions."""

    base_url: str
    api_key: Optional[str] = None
    bearer_token: Optional[str] = None
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        self._http = HttpClient(
            base_url=self.base_url,
            api_key=self.api_key,
            bearer_token=self.bearer_token,
            timeout_seconds=self.timeout_seconds,
        )

    def get_user(self, user_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Profile plus onboarding answers."""
        return self._http.post("getUser", {"userId": user_id}, user_id=user_id, timeout=timeout)

    def get_user_workouts(self, user_id: str, limit: int = 5, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Completed workouts, most recent first."""
        return self._http.post(
            "getUserWorkouts",
            {"userId": user_id, "limit": limit, "status": "completed"},
            user_id=user_id,
            timeout=timeout,
        )

    def close(self) -> None:
        self._http.close()
