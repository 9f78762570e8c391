"""
Error hierarchy for the video DRM core.

Every error carries a machine-readable ``code`` and the HTTP ``status`` the API
layer renders it with. Authorization failures are explicit reasons, never a
generic failure:

- InvalidRequestError (400): malformed ids or headers, raised before the
  session registry is touched
- AuthenticationError (401): missing or invalid bearer token
- SessionExpiredError (401): the session existed but its lifetime is over;
  clients should request a fresh session rather than show a permanent denial
- AuthorizationError (403): no session, foreign session, or content not
  purchased; carries a lock reason
- DecryptionError (403): corrupted or mismatched ciphertext
- RateLimitExceeded (429): carries ``retry_after`` seconds
- DetectionHeuristicError: a single anti-piracy check failed; never escapes
  the detection engine
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DRMError(Exception):
    """Base class for all errors raised by the DRM core."""

    code = "drm_error"
    status = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class ConfigError(DRMError):
    code = "invalid_config"


class InvalidRequestError(DRMError):
    code = "invalid_request"
    status = 400


class AuthenticationError(DRMError):
    code = "authentication_required"
    status = 401


class SessionExpiredError(DRMError):
    code = "session_expired"
    status = 401

    def __init__(self, session_id: str, message: str = "DRM session expired"):
        super().__init__(message)
        self.session_id = session_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry"] = "request_new_session"
        return data


class AuthorizationError(DRMError):
    code = "access_denied"
    status = 403

    def __init__(self, message: str, lock_reason: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.lock_reason = lock_reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.lock_reason is not None:
            data["data"] = {
                "isLocked": True,
                "lockReason": self.lock_reason,
                "requiresPurchase": self.lock_reason == "purchase_required",
            }
        return data


class NotFoundError(DRMError):
    code = "not_found"
    status = 404


class DecryptionError(DRMError):
    code = "decryption_failed"
    status = 403


class RateLimitExceeded(DRMError):
    code = "rate_limit_exceeded"
    status = 429

    def __init__(self, retry_after: int, message: str = "Too many requests from this IP, please try again later."):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        return data


class DetectionHeuristicError(DRMError):
    code = "heuristic_failed"

    def __init__(self, heuristic: str, cause: BaseException):
        super().__init__(f"Heuristic {heuristic!r} failed: {cause}")
        self.heuristic = heuristic
        self.cause = cause
