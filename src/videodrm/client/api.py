"""Thin HTTP client for the DRM API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import (
    AuthenticationError,
    AuthorizationError,
    DecryptionError,
    DRMError,
    InvalidRequestError,
    NotFoundError,
    RateLimitExceeded,
    SessionExpiredError,
)

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/api/drm"


def _raise_for_error(response: httpx.Response) -> None:
    """Map an error envelope back onto the DRMError hierarchy."""
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("message") or response.reason_phrase or "Request failed"
    code = body.get("error")
    status = response.status_code
    if status == 400:
        raise InvalidRequestError(message, code=code)
    if status == 401:
        if code == SessionExpiredError.code:
            raise SessionExpiredError(body.get("sessionId", ""), message)
        raise AuthenticationError(message, code=code)
    if status == 403:
        if code == DecryptionError.code:
            raise DecryptionError(message)
        lock_reason = (body.get("data") or {}).get("lockReason")
        raise AuthorizationError(message, lock_reason=lock_reason, code=code)
    if status == 404:
        raise NotFoundError(message, code=code)
    if status == 429:
        raise RateLimitExceeded(int(response.headers.get("Retry-After", body.get("retryAfter", 1))), message)
    raise DRMError(message, code=code)


class DRMApiClient:
    """Bearer-authenticated wrapper over an ``httpx.Client``.

    Any httpx-compatible client works, including FastAPI's ``TestClient``.
    """

    def __init__(self, http: httpx.Client, token: str, prefix: str = API_PREFIX):
        self.http = http
        self.token = token
        self.prefix = prefix.rstrip("/")

    @classmethod
    def connect(cls, base_url: str, token: str, timeout: float = 10.0) -> "DRMApiClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), token)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        response = self.http.request(method, f"{self.prefix}{path}", json=json, headers=self.headers)
        _raise_for_error(response)
        return response.json().get("data") or {}

    def get_video(self, video_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/videos/{video_id}")

    def get_course_videos(self, course_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/courses/{course_id}/videos")

    def decrypt_url(self, encrypted_url: str, session_id: str) -> str:
        data = self._request("POST", "/decrypt-url", {"encryptedUrl": encrypted_url, "sessionId": session_id})
        return data["decryptedUrl"]

    def validate_session(self, session_id: str, video_id: str) -> bool:
        data = self._request("POST", f"/sessions/{session_id}/validate", {"videoId": video_id})
        return bool(data.get("valid"))

    def revoke_session(self, session_id: str) -> bool:
        data = self._request("DELETE", f"/sessions/{session_id}")
        return bool(data.get("revoked"))

    def report_environment(self, session_id: str, environment: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/sessions/{session_id}/security-report", environment)

    def stats(self) -> Dict[str, Any]:
        return self._request("GET", "/stats")
