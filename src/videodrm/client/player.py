"""
Client-side DRM session manager.

This module provides the playback-side counterpart of the server session
manager. It can:
- Open a protected video and cache the issued session locally
- Decrypt the streaming URL through the server
- Validate the cached session and drop it on any failure
- Build the watermark overlay for the render surface
- Run periodic anti-piracy scans while a session is active

The local copy is only a cache; the server decides.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional

from ..config import DRMConfig
from ..detection.base import ClientEnvironment, SecurityViolationReport
from ..detection.engine import AntiPiracyEngine
from ..errors import AuthorizationError, DRMError
from ..utils.periodic import PeriodicTask
from ..watermarking.overlay import WatermarkOverlay, build_overlay
from .api import DRMApiClient
from .store import SessionStore

LOGGER = logging.getLogger(__name__)

SESSION_KEY = "drm_session"

EnvironmentProvider = Callable[[], ClientEnvironment | Dict[str, Any]]


@dataclass(frozen=True)
class CachedSession:
    """Client view of an issued session (no key material)."""

    session_id: str
    video_id: str
    expires_at_ms: int
    encrypted_url: Optional[str]
    watermark: str

    @classmethod
    def from_drm(cls, video_id: str, drm: Dict[str, Any], now: float) -> "CachedSession":
        expires_at = drm.get("sessionExpiresAt") or int((now + int(drm.get("expiresIn") or 0)) * 1000)
        return cls(
            session_id=drm["sessionId"],
            video_id=video_id,
            expires_at_ms=int(expires_at),
            encrypted_url=drm.get("encryptedUrl"),
            watermark=drm.get("watermarkData") or "",
        )

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "videoId": self.video_id,
            "expiresAt": self.expires_at_ms,
            "encryptedUrl": self.encrypted_url,
            "watermarkData": self.watermark,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedSession":
        return cls(
            session_id=data["sessionId"],
            video_id=data["videoId"],
            expires_at_ms=int(data["expiresAt"]),
            encrypted_url=data.get("encryptedUrl"),
            watermark=data.get("watermarkData") or "",
        )

    def is_expired(self, now: float) -> bool:
        return now * 1000 >= self.expires_at_ms


class PlaybackClient:
    """Playback-side session handling for one viewer."""

    def __init__(self, api: DRMApiClient, store: SessionStore, config: Optional[DRMConfig] = None,
                 engine: Optional[AntiPiracyEngine] = None,
                 environment_provider: Optional[EnvironmentProvider] = None,
                 on_report: Optional[Callable[[SecurityViolationReport], None]] = None,
                 clock: Optional[Callable[[], float]] = None):
        """Initialize the playback client.

        Args:
            api: Authenticated API client
            store: Local session cache
            config: Overlay and scan settings
            engine: Anti-piracy engine; built from ``config`` when omitted
            environment_provider: Returns the current environment snapshot;
                no periodic scans run without one
            on_report: Called with every periodic scan result
            clock: Epoch seconds, ``time.time`` by default
        """
        self.api = api
        self.store = store
        self.config = config or DRMConfig()
        self.engine = engine or AntiPiracyEngine.from_config(self.config)
        self.environment_provider = environment_provider
        self.on_report = on_report
        self.clock = clock or time.time
        self.last_report: Optional[SecurityViolationReport] = None
        self.history: List[Dict[str, Any]] = []
        self._security_task: Optional[PeriodicTask] = None

    # session cache

    def _record(self, event: str, **fields: Any) -> None:
        entry = {"event": event, "timestamp": datetime.now(UTC).isoformat()}
        entry.update(fields)
        self.history.append(entry)

    def invalidate(self) -> None:
        """Drop the cached session and stop its timers."""
        self._stop_security_checks()
        if self.store.delete(SESSION_KEY):
            LOGGER.debug("Local DRM session cache cleared")

    def get_current_session(self) -> Optional[CachedSession]:
        """Cached session, or None if absent or locally expired (no server round-trip)."""
        data = self.store.get(SESSION_KEY)
        if not data:
            return None
        try:
            session = CachedSession.from_dict(data)
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Discarding malformed cached DRM session")
            self.invalidate()
            return None
        if session.is_expired(self.clock()):
            LOGGER.info("Cached DRM session %s expired", session.session_id[:8])
            self.invalidate()
            return None
        return session

    # playback

    def open_video(self, video_id: str) -> Dict[str, Any]:
        """Request a video. Caches the DRM session and starts security checks.

        Returns:
            The ``data`` payload of the video response

        Raises:
            AuthorizationError: Video locked (``lock_reason`` says why)
        """
        data = self.api.get_video(video_id)
        drm = data.get("drm") or {}
        if drm.get("enabled") and drm.get("sessionId"):
            self.invalidate()
            session = CachedSession.from_drm(video_id, drm, self.clock())
            self.store.set(SESSION_KEY, session.to_dict())
            self._start_security_checks()
            self._record("session_opened", video_id=video_id, session_id=session.session_id)
            LOGGER.info("DRM session initialized for video %s", video_id)
        else:
            self._record("opened_without_drm", video_id=video_id)
        return data

    def decrypt_url(self, encrypted_url: Optional[str] = None) -> str:
        """Decrypt the session's streaming URL through the server.

        Raises:
            AuthorizationError: No current session
            DRMError: Server rejected the request; the cache is invalidated
        """
        session = self.get_current_session()
        if session is None:
            raise AuthorizationError("No active DRM session", code="invalid_session")
        token = encrypted_url or session.encrypted_url
        if not token:
            raise AuthorizationError("Session carries no encrypted URL", code="invalid_session")
        try:
            url = self.api.decrypt_url(token, session.session_id)
        except DRMError as e:
            LOGGER.warning("Failed to decrypt URL: %s", e.message)
            self.invalidate()
            self._record("decrypt_failed", session_id=session.session_id, error=e.code)
            raise
        self._record("decrypted", session_id=session.session_id)
        return url

    def validate(self) -> bool:
        """Ask the server whether the cached session is still valid."""
        session = self.get_current_session()
        if session is None:
            return False
        try:
            valid = self.api.validate_session(session.session_id, session.video_id)
        except DRMError as e:
            LOGGER.warning("Session validation failed: %s", e.message)
            valid = False
        if not valid:
            self.invalidate()
            self._record("validation_failed", session_id=session.session_id)
        return valid

    def overlay(self, width: int, height: int) -> Optional[WatermarkOverlay]:
        session = self.get_current_session()
        if session is None or not session.watermark:
            return None
        return build_overlay(
            session.watermark, width, height,
            spacing=self.config.watermark_spacing,
            rotation=self.config.watermark_rotation,
            opacity=self.config.watermark_opacity,
            font_size=self.config.watermark_font_size,
        )

    # security checks

    def _start_security_checks(self) -> None:
        if self.environment_provider is None:
            return
        self._stop_security_checks()
        self._security_task = PeriodicTask(self.config.security_check_interval, self.run_security_check,
                                           name="drm-security-check").start()

    def _stop_security_checks(self) -> None:
        if self._security_task is not None:
            self._security_task.stop()
            self._security_task = None

    @property
    def security_checks_running(self) -> bool:
        return self._security_task is not None and self._security_task.running

    def run_security_check(self) -> Optional[SecurityViolationReport]:
        """Scan the current environment once. Reports only; never revokes."""
        if self.environment_provider is None or self.get_current_session() is None:
            return None
        env = self.environment_provider()
        if not isinstance(env, ClientEnvironment):
            env = ClientEnvironment.from_dict(env)
        report = self.engine.scan(env)
        self.last_report = report
        if not report.is_secure:
            LOGGER.warning("Security violations during playback: %s", report.messages)
            self._record("security_violation", violations=report.messages)
        if self.on_report is not None:
            self.on_report(report)
        return report

    # teardown

    def close(self) -> None:
        """Revoke server-side, stop timers and clear the local copy."""
        session = self.store.get(SESSION_KEY)
        self._stop_security_checks()
        if session and session.get("sessionId"):
            try:
                self.api.revoke_session(session["sessionId"])
            except DRMError as e:
                LOGGER.warning("Failed to revoke DRM session: %s", e.message)
            self._record("session_closed", session_id=session["sessionId"])
        self.store.clear()

    def report(self) -> Dict[str, Any]:
        """Summary of client activity."""
        session = self.get_current_session()
        return {
            "scope": self.store.scope,
            "active_session": session.session_id if session else None,
            "security_checks": self.security_checks_running,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "history": list(self.history),
        }
