"""
Server-side DRM session manager.

Lifecycle of a session: NonExistent -> Active -> {Expired | Revoked}. Both
terminal states are absorbing. A session is only created after a positive
AccessDecision, binds exactly one (user, video) pair, and carries its own
ephemeral key under which the streaming URL is encrypted.

The manager is constructed explicitly and owns a background cleanup task
between ``start()`` and ``stop()``. Validation never depends on that task.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, Optional, Tuple

from ..access.decision import AccessDecision
from ..config import DRMConfig
from ..encryption import cipher
from ..encryption.tokens import AccessTokenCodec
from ..errors import AuthorizationError, DecryptionError, SessionExpiredError
from ..server.headers import stream_headers
from ..utils.logs import security_event, short_id
from ..utils.periodic import PeriodicTask
from ..watermarking.overlay import build_overlay, derive_payload, WatermarkOverlay
from .registry import SessionRegistry, SessionState

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class DRMSession:
    """An issued session. Immutable: nothing can extend ``expires_at``."""

    session_id: str
    user_id: str
    video_id: str
    created_at: datetime
    expires_at: datetime
    encryption_key: bytes = field(repr=False)
    watermark_payload: str
    access_token: str = field(repr=False)
    course_id: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at

    def expires_in(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_public_dict(self, now: datetime) -> dict:
        """Client-facing view. The encryption key never leaves the server."""
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "videoId": self.video_id,
            "expiresAt": int(self.expires_at.timestamp() * 1000),
            "expiresIn": self.expires_in(now),
            "watermarkData": self.watermark_payload,
            "accessToken": self.access_token,
        }


@dataclass(frozen=True)
class StreamGrant:
    encrypted_url: str
    security_headers: Dict[str, str]
    expires_in: int
    watermark_data: str

    def to_dict(self) -> dict:
        return {
            "encryptedUrl": self.encrypted_url,
            "securityHeaders": dict(self.security_headers),
            "expiresIn": self.expires_in,
            "watermarkData": self.watermark_data,
        }


class SessionManager:
    """Issues, validates, decrypts for and revokes DRM sessions."""

    def __init__(self, config: Optional[DRMConfig] = None, registry: Optional[SessionRegistry] = None,
                 token_codec: Optional[AccessTokenCodec] = None, clock: Optional[Clock] = None):
        self.config = config or DRMConfig()
        self.registry = registry or SessionRegistry()
        self.tokens = token_codec or AccessTokenCodec(self.config.token_secret)
        self.clock = clock or utc_now
        self.session_timeout = timedelta(seconds=self.config.session_timeout)
        self._cleanup = PeriodicTask(self.config.cleanup_interval, self.cleanup_expired,
                                     name="drm-session-cleanup")

    # lifecycle

    def start(self) -> "SessionManager":
        self._cleanup.start()
        LOGGER.info("DRM session manager started (timeout=%ss)", self.config.session_timeout)
        return self

    def stop(self) -> None:
        self._cleanup.stop()
        LOGGER.info("DRM session manager stopped")

    @property
    def running(self) -> bool:
        return self._cleanup.running

    # issuance

    def create_session(self, user_id: str, video_id: str, decision: AccessDecision,
                       course_id: Optional[str] = None) -> DRMSession:
        """Create a session for (user, video).

        Args:
            user_id: Viewer
            video_id: Video being unlocked
            decision: AccessDecision computed for this request
            course_id: Owning course, kept for audit

        Returns:
            The registered DRMSession

        Raises:
            AuthorizationError: If the decision does not grant access
        """
        if decision is None or not decision.has_access:
            reason = decision.lock_reason.value if decision and decision.lock_reason else None
            security_event("session_denied", "session requested without access", user=user_id,
                           video=video_id, reason=reason)
            raise AuthorizationError("Access denied to this video", lock_reason=reason or "purchase_required")

        now = self.clock()
        session_id = str(uuid.uuid4())
        expires_at = now + self.session_timeout
        session = DRMSession(
            session_id=session_id,
            user_id=user_id,
            video_id=video_id,
            course_id=course_id,
            created_at=now,
            expires_at=expires_at,
            encryption_key=cipher.generate_key(),
            watermark_payload=derive_payload(user_id, video_id, now, self.config.watermark_length),
            access_token=self.tokens.seal(user_id, video_id, session_id, now, expires_at),
        )
        self.registry.add(session)
        LOGGER.info("DRM session created: %s for user %s video %s", session_id, short_id(user_id),
                    short_id(video_id))
        return session

    def issue_stream(self, session: DRMSession, storage_url: str,
                     url_ttl: Optional[int] = None) -> StreamGrant:
        """Encrypt ``storage_url`` under the session key."""
        state, _ = self.registry.lookup(session.session_id, self.clock())
        if state is not SessionState.ACTIVE:
            raise AuthorizationError("Invalid DRM session", code="invalid_session")
        return StreamGrant(
            encrypted_url=cipher.encrypt_url(storage_url, session.encryption_key, session.session_id),
            security_headers=stream_headers(session.session_id, session.user_id, session.video_id,
                                            session.watermark_payload),
            expires_in=url_ttl or self.config.stream_url_ttl,
            watermark_data=session.watermark_payload,
        )

    def build_overlay(self, session: DRMSession, width: int, height: int) -> WatermarkOverlay:
        return build_overlay(
            session.watermark_payload, width, height,
            spacing=self.config.watermark_spacing,
            rotation=self.config.watermark_rotation,
            opacity=self.config.watermark_opacity,
            font_size=self.config.watermark_font_size,
        )

    # validation

    def lookup(self, session_id: str) -> Tuple[SessionState, Optional[DRMSession]]:
        """State plus the record while the registry still holds it (Active or Expired)."""
        return self.registry.lookup(session_id, self.clock())

    def state(self, session_id: str) -> SessionState:
        state, _ = self.lookup(session_id)
        return state

    def state_for(self, session_id: str, user_id: str) -> SessionState:
        """State as seen by ``user_id``. Sessions bound to anyone else read as NonExistent."""
        state = self.state(session_id)
        if state is not SessionState.NON_EXISTENT and self.registry.owner(session_id) != user_id:
            return SessionState.NON_EXISTENT
        return state

    def get_session(self, session_id: str) -> Optional[DRMSession]:
        """Return the session if it is Active, else None."""
        state, session = self.registry.lookup(session_id, self.clock())
        return session if state is SessionState.ACTIVE else None

    def validate_session(self, session_id: str, user_id: Optional[str] = None,
                         video_id: Optional[str] = None) -> bool:
        """True iff the session exists, is not revoked, and ``now < expires_at``.

        When ``user_id``/``video_id`` are given they must match the binding.
        """
        session = self.get_session(session_id)
        if session is None:
            return False
        if user_id is not None and session.user_id != user_id:
            security_event("session_mismatch", "user does not own session", session=short_id(session_id),
                           user=user_id)
            return False
        if video_id is not None and session.video_id != video_id:
            security_event("session_mismatch", "session bound to another video", session=short_id(session_id),
                           video=video_id)
            return False
        return True

    def require_session(self, session_id: str, user_id: Optional[str] = None) -> DRMSession:
        """Return the Active session or raise the matching error."""
        state, session = self.registry.lookup(session_id, self.clock())
        if state is SessionState.NON_EXISTENT:
            raise AuthorizationError("Invalid or expired DRM session", code="invalid_session")
        if state is SessionState.REVOKED:
            raise AuthorizationError("DRM session has been revoked", code="session_revoked")
        if state is SessionState.EXPIRED:
            raise SessionExpiredError(session_id)
        if user_id is not None and session.user_id != user_id:
            security_event("session_mismatch", "decrypt attempted with a foreign session",
                           session=short_id(session_id), user=user_id)
            raise AuthorizationError("Invalid or expired DRM session", code="invalid_session")
        return session

    def decrypt_url(self, session_id: str, encrypted_url: str, user_id: Optional[str] = None) -> str:
        """Decrypt a URL issued for ``session_id``.

        Raises:
            AuthorizationError: Unknown, revoked or foreign session
            SessionExpiredError: Session lifetime is over
            DecryptionError: Ciphertext corrupted or bound to another session
        """
        session = self.require_session(session_id, user_id=user_id)
        try:
            return cipher.decrypt_url(encrypted_url, session.encryption_key, session.session_id)
        except DecryptionError as e:
            security_event("decryption_failed", str(e), session=short_id(session_id),
                           user=session.user_id, video=session.video_id)
            raise

    # teardown

    def revoke_session(self, session_id: str) -> bool:
        """Revoke immediately. Idempotent; returns True only if state changed."""
        revoked = self.registry.revoke(session_id, self.clock())
        if revoked:
            LOGGER.info("DRM session revoked: %s", session_id)
        return revoked

    def cleanup_expired(self) -> int:
        removed, tombstones = self.registry.purge(self.clock(), tombstone_ttl=self.session_timeout)
        if removed or tombstones:
            LOGGER.debug("Retired %d expired sessions, dropped %d tombstones", removed, tombstones)
        return removed

    def stats(self) -> Dict[str, int]:
        now = self.clock()
        sessions, tombstones = self.registry.snapshot()
        active = sum(1 for s in sessions if s.is_active(now))
        return {
            "totalSessions": len(sessions),
            "activeSessions": active,
            "expiredSessions": len(sessions) - active,
            "revokedSessions": tombstones[SessionState.REVOKED],
        }
