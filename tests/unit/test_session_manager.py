"""Tests for the server-side DRM session manager."""

import threading
from datetime import datetime, timedelta, UTC

import pytest

from videodrm.access.decision import AccessDecision, LockReason
from videodrm.config import DRMConfig
from videodrm.errors import AuthorizationError, DecryptionError, SessionExpiredError
from videodrm.session.manager import SessionManager
from videodrm.session.registry import SessionState

USER = "aaaaaaaaaaaaaaaaaaaaaaaa"
OTHER = "bbbbbbbbbbbbbbbbbbbbbbbb"
VIDEO = "111111111111111111111111"
URL = "https://storage.local/videos/c/paid.mp4?expires=1&signature=ab"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_manager(clock=None):
    return SessionManager(DRMConfig(token_secret="t" * 32), clock=clock or FakeClock())


class TestCreateSession:
    """Test session issuance."""

    def test_requires_positive_decision(self):
        """No session is created without access."""
        manager = make_manager()
        with pytest.raises(AuthorizationError) as exc:
            manager.create_session(USER, VIDEO, AccessDecision.denied(LockReason.PURCHASE_REQUIRED))
        assert exc.value.lock_reason == "purchase_required"
        assert manager.stats()["totalSessions"] == 0

    def test_session_fields(self):
        """Sessions bind user and video and expire after the timeout."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        assert session.user_id == USER and session.video_id == VIDEO
        assert session.expires_at - session.created_at == timedelta(seconds=3600)
        assert len(session.encryption_key) == 32
        assert session.watermark_payload.startswith(USER[:4] + "-")
        assert manager.state(session.session_id) is SessionState.ACTIVE

    def test_access_token_carries_claims(self):
        """The opaque access token opens to the session claims."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        claims = manager.tokens.open(session.access_token, now=clock())
        assert claims["sessionId"] == session.session_id
        assert claims["userId"] == USER

    def test_public_view_hides_key(self):
        """The encryption key never appears in the client view or repr."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        public = session.to_public_dict(manager.clock())
        assert "encryptionKey" not in public and "encryption_key" not in public
        assert session.encryption_key.hex() not in repr(session)

    def test_session_ids_unique(self):
        """Every session gets a fresh id."""
        manager = make_manager()
        ids = {manager.create_session(USER, VIDEO, AccessDecision.granted()).session_id for _ in range(20)}
        assert len(ids) == 20


class TestValidation:
    """Test expiry and binding checks."""

    def test_expiry_monotonic(self):
        """Valid before expires_at, invalid at and after it."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        clock.advance(minutes=59)
        assert manager.validate_session(session.session_id) is True
        clock.advance(minutes=1)
        assert manager.validate_session(session.session_id) is False
        assert manager.state(session.session_id) is SessionState.EXPIRED
        clock.advance(minutes=30)
        assert manager.validate_session(session.session_id) is False

    def test_validation_never_extends_expiry(self):
        """Repeated validation leaves expires_at unchanged."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        for _ in range(5):
            clock.advance(minutes=10)
            manager.validate_session(session.session_id)
        assert manager.lookup(session.session_id)[1].expires_at == session.expires_at

    def test_binding_checked(self):
        """A session only validates for its own user and video."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        assert manager.validate_session(session.session_id, user_id=USER, video_id=VIDEO) is True
        assert manager.validate_session(session.session_id, user_id=OTHER) is False
        assert manager.validate_session(session.session_id, video_id="2" * 24) is False

    def test_unknown_session(self):
        """Unknown ids are NON_EXISTENT and invalid."""
        manager = make_manager()
        assert manager.validate_session("00000000-0000-0000-0000-000000000000") is False
        assert manager.state("nope") is SessionState.NON_EXISTENT


class TestDecrypt:
    """Test URL decryption through the manager."""

    def test_round_trip(self):
        """An issued URL decrypts under its own session."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        grant = manager.issue_stream(session, URL)
        assert manager.decrypt_url(session.session_id, grant.encrypted_url, user_id=USER) == URL
        assert grant.security_headers["X-DRM-Session"] == session.session_id

    def test_other_session_cannot_decrypt(self):
        """Ciphertext bound to one session fails under another."""
        manager = make_manager()
        a = manager.create_session(USER, VIDEO, AccessDecision.granted())
        b = manager.create_session(USER, VIDEO, AccessDecision.granted())
        token = manager.issue_stream(a, URL).encrypted_url
        with pytest.raises(DecryptionError):
            manager.decrypt_url(b.session_id, token)

    def test_expired_session_distinguishable(self):
        """Decrypting after expiry raises SessionExpiredError, not a generic failure."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        token = manager.issue_stream(session, URL).encrypted_url
        clock.advance(minutes=61)
        with pytest.raises(SessionExpiredError) as exc:
            manager.decrypt_url(session.session_id, token)
        assert exc.value.code == "session_expired"

    def test_foreign_user_rejected(self):
        """A user cannot decrypt with someone else's session."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        token = manager.issue_stream(session, URL).encrypted_url
        with pytest.raises(AuthorizationError):
            manager.decrypt_url(session.session_id, token, user_id=OTHER)

    def test_unknown_session_rejected(self):
        """Decrypt without a session is an authorization error."""
        with pytest.raises(AuthorizationError) as exc:
            make_manager().decrypt_url("00000000-0000-0000-0000-000000000000", "v1.abc")
        assert exc.value.code == "invalid_session"


class TestRevocation:
    """Test revocation and cleanup."""

    def test_revoke_idempotent(self):
        """Second revoke returns False and changes nothing."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        assert manager.revoke_session(session.session_id) is True
        assert manager.revoke_session(session.session_id) is False
        assert manager.state(session.session_id) is SessionState.REVOKED
        assert manager.validate_session(session.session_id) is False

    def test_revoked_decrypt_rejected(self):
        """Revoked sessions raise session_revoked."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        token = manager.issue_stream(session, URL).encrypted_url
        manager.revoke_session(session.session_id)
        with pytest.raises(AuthorizationError) as exc:
            manager.decrypt_url(session.session_id, token)
        assert exc.value.code == "session_revoked"

    def test_revoke_unknown_is_noop(self):
        """Revoking an unknown id returns False."""
        assert make_manager().revoke_session("00000000-0000-0000-0000-000000000000") is False

    def test_concurrent_revoke_single_winner(self):
        """Exactly one of many concurrent revokes reports a change."""
        manager = make_manager()
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        results = []
        threads = [threading.Thread(target=lambda: results.append(manager.revoke_session(session.session_id)))
                   for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_cleanup_and_stats(self):
        """cleanup_expired removes expired sessions only."""
        clock = FakeClock()
        manager = make_manager(clock)
        old = manager.create_session(USER, VIDEO, AccessDecision.granted())
        clock.advance(minutes=45)
        manager.create_session(USER, VIDEO, AccessDecision.granted())
        clock.advance(minutes=20)
        stats = manager.stats()
        assert stats["totalSessions"] == 2 and stats["activeSessions"] == 1 and stats["expiredSessions"] == 1
        assert manager.cleanup_expired() == 1
        assert manager.state(old.session_id) is SessionState.EXPIRED
        assert manager.stats()["totalSessions"] == 1

    def test_expired_cannot_be_revoked(self):
        """Revoking an expired session changes nothing; it stays Expired."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        clock.advance(minutes=61)
        assert manager.revoke_session(session.session_id) is False
        assert manager.state(session.session_id) is SessionState.EXPIRED
        manager.cleanup_expired()
        assert manager.revoke_session(session.session_id) is False
        assert manager.state(session.session_id) is SessionState.EXPIRED

    def test_expiry_survives_cleanup(self):
        """Decrypt still reports session_expired after cleanup retires the record."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        token = manager.issue_stream(session, URL).encrypted_url
        clock.advance(minutes=61)
        manager.cleanup_expired()
        with pytest.raises(SessionExpiredError):
            manager.decrypt_url(session.session_id, token, user_id=USER)
        assert manager.validate_session(session.session_id) is False

    def test_tombstones_dropped_after_timeout(self):
        """Terminal records are forgotten one timeout after they were reached."""
        clock = FakeClock()
        manager = make_manager(clock)
        expired = manager.create_session(USER, VIDEO, AccessDecision.granted())
        revoked = manager.create_session(USER, VIDEO, AccessDecision.granted())
        clock.advance(minutes=30)
        manager.revoke_session(revoked.session_id)
        clock.advance(minutes=31)
        manager.cleanup_expired()
        assert manager.stats()["revokedSessions"] == 1
        clock.advance(minutes=60)
        manager.cleanup_expired()
        assert manager.state(expired.session_id) is SessionState.NON_EXISTENT
        assert manager.state(revoked.session_id) is SessionState.NON_EXISTENT
        assert manager.stats()["revokedSessions"] == 0

    def test_state_hidden_from_other_users(self):
        """Another user sees a foreign session as NonExistent in every state."""
        clock = FakeClock()
        manager = make_manager(clock)
        session = manager.create_session(USER, VIDEO, AccessDecision.granted())
        assert manager.state_for(session.session_id, USER) is SessionState.ACTIVE
        assert manager.state_for(session.session_id, OTHER) is SessionState.NON_EXISTENT
        manager.revoke_session(session.session_id)
        assert manager.state_for(session.session_id, USER) is SessionState.REVOKED
        assert manager.state_for(session.session_id, OTHER) is SessionState.NON_EXISTENT

    def test_start_stop(self):
        """The cleanup task runs between start and stop."""
        manager = make_manager()
        manager.start()
        assert manager.running is True
        manager.stop()
        assert manager.running is False
