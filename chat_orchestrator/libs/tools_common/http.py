from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class HttpClient:
    """JSON-over-HTTP client for the app's backend functions."""

    base_url: str
    api_key: Optional[str] = None
    bearer_token: Optional[str] = None
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        self._session = requests.Session()

    def _headers(self, user_id: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        if user_id:
            headers["X-User-Id"] = user_id
        if extra:
            headers.update(extra)
        return headers

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        resp = self._session.get(
            self._url(path),
            params=params or {},
            headers=self._headers(user_id),
            timeout=timeout or self.timeout_seconds,
        )
        return self._handle_response(resp)

    def post(
        self,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        resp = self._session.post(
            self._url(path),
            json=json_body or {},
            headers=self._headers(user_id),
            timeout=timeout or self.timeout_seconds,
        )
        return self._handle_response(resp)

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _handle_response(resp: requests.Response) -> Dict[str, Any]:
        text = resp.text
        try:
            data = resp.json()
        except ValueError:
            # Some functions answer with ndjson; the last line carries the result.
            lines = [line for line in text.strip().split("\n") if line.strip()]
            try:
                data = json.loads(lines[-1]) if lines else {}
            except ValueError:
                data = {"raw": text}

        if resp.status_code >= 400:
            err = data.get("error") if isinstance(data, dict) else None
            if isinstance(err, dict):
                message = err.get("message") or f"HTTP {resp.status_code}"
            else:
                message = err or text or f"HTTP {resp.status_code}"
            logger.warning("HTTP %s from %s: %s", resp.status_code, resp.url, message)
            raise requests.HTTPError(message, response=resp)
        return data if isinstance(data, dict) else {"data": data}
