"""Integration tests for the playback client against the API."""

import json
import threading
import time

import pytest
from fastapi.testclient import TestClient

from videodrm.access.catalog import InMemoryCatalog, InMemoryPurchaseLedger, VideoRecord
from videodrm.client.api import DRMApiClient
from videodrm.client.player import SESSION_KEY, PlaybackClient
from videodrm.client.store import SessionStore
from videodrm.config import DRMConfig
from videodrm.detection.base import ClientEnvironment
from videodrm.errors import AuthorizationError
from videodrm.server.app import DRMServices, create_app
from videodrm.session.registry import SessionState

USER = "aaaaaaaaaaaaaaaaaaaaaaaa"
ADMIN = "dddddddddddddddddddddddd"
COURSE = "cccccccccccccccccccccccc"
PAID = "111111111111111111111111"
FREE = "222222222222222222222222"


def make_services(**overrides):
    config = DRMConfig(jwt_secret="j" * 32, token_secret="t" * 32, storage_secret="s" * 32, **overrides)
    catalog = InMemoryCatalog([
        VideoRecord(id=PAID, course_id=COURSE, storage_key="course/paid.mp4"),
        VideoRecord(id=FREE, course_id=COURSE, is_free_preview=True, storage_key="course/free.mp4"),
    ])
    return DRMServices.build(config=config, catalog=catalog, purchases=InMemoryPurchaseLedger())


def make_player(http, services, user=USER, role="student", store=None, **kwargs):
    api = DRMApiClient(http, services.tokens.issue(user, role))
    return PlaybackClient(api, store or SessionStore(user), config=services.config, **kwargs)


class TestSessionStore:
    """Test the local session cache."""

    def test_persists_per_scope(self, tmp_path):
        """Values survive reopening the same scope."""
        SessionStore("user-1", tmp_path).set("k", {"a": 1})
        assert SessionStore("user-1", tmp_path).get("k") == {"a": 1}
        assert SessionStore("user-2", tmp_path).get("k") is None

    def test_delete_and_clear(self, tmp_path):
        """delete reports whether a key existed; clear removes the file."""
        store = SessionStore("user-1", tmp_path)
        store.set("k", 1)
        assert store.delete("k") is True
        assert store.delete("k") is False
        store.set("k", 1)
        store.clear()
        assert not store.path.exists()
        assert "k" not in store

    def test_corrupt_file_discarded(self, tmp_path):
        """An unreadable cache starts empty."""
        (tmp_path / "user-1.json").write_text("{not json")
        assert SessionStore("user-1", tmp_path).keys() == []

    def test_scope_sanitized(self, tmp_path):
        """Scopes cannot escape the directory."""
        store = SessionStore("../evil", tmp_path)
        assert store.path.parent == tmp_path


class TestPlaybackClient:
    """Test the client session lifecycle."""

    def test_open_decrypt_overlay(self):
        """A free preview opens, decrypts through the server and renders an overlay."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services)
            data = player.open_video(FREE)
            session = player.get_current_session()
            assert session.session_id == data["drm"]["sessionId"]
            assert "encryptionKey" not in json.dumps(player.store.get(SESSION_KEY))

            url = player.decrypt_url()
            assert services.signer.verify(url)
            assert player.validate() is True

            overlay = player.overlay(1280, 720)
            assert overlay.text == session.watermark
            assert len(overlay.tiles) == (7 + 1) * (4 + 1)
            player.close()

    def test_locked_video(self):
        """Opening a paid video without purchase raises with the lock reason."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services)
            with pytest.raises(AuthorizationError) as exc:
                player.open_video(PAID)
            assert exc.value.lock_reason == "purchase_required"
            assert player.get_current_session() is None

    def test_admin_has_no_local_session(self):
        """Admins play without DRM, so nothing is cached."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services, user=ADMIN, role="admin")
            data = player.open_video(PAID)
            assert data["drm"]["enabled"] is False
            assert player.get_current_session() is None

    def test_local_expiry_without_round_trip(self):
        """A locally expired session is dropped before any request."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            now = [time.time()]
            player = make_player(http, services, clock=lambda: now[0])
            player.open_video(FREE)
            now[0] += 3601
            assert player.get_current_session() is None
            assert SESSION_KEY not in player.store
            with pytest.raises(AuthorizationError):
                player.decrypt_url()

    def test_server_revocation_invalidates_cache(self):
        """A failed validate drops the local copy."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services)
            player.open_video(FREE)
            services.sessions.revoke_session(player.get_current_session().session_id)
            assert player.validate() is False
            assert player.get_current_session() is None

    def test_failed_decrypt_invalidates_cache(self):
        """A rejected decrypt raises and drops the local copy."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services)
            player.open_video(FREE)
            services.sessions.revoke_session(player.get_current_session().session_id)
            with pytest.raises(AuthorizationError) as exc:
                player.decrypt_url()
            assert exc.value.code == "session_revoked"
            assert player.get_current_session() is None

    def test_close_revokes_server_side(self):
        """close revokes, stops timers and clears the store."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services, environment_provider=ClientEnvironment)
            player.open_video(FREE)
            sid = player.get_current_session().session_id
            assert player.security_checks_running is True
            player.close()
            assert services.sessions.state(sid) is SessionState.REVOKED
            assert player.security_checks_running is False
            assert player.store.keys() == []


class TestSecurityChecks:
    """Test periodic anti-piracy scans on the client."""

    def test_report_never_revokes(self):
        """Violations are reported to the callback; the session stays valid."""
        services = make_services()
        reports = []
        with TestClient(create_app(services)) as http:
            player = make_player(
                http, services,
                environment_provider=lambda: {"documentTitle": "OBS Studio", "extensions": ["video-saver"]},
                on_report=reports.append,
            )
            player.open_video(FREE)
            report = player.run_security_check()
            assert report.is_secure is False
            assert reports == [report]
            assert player.last_report is report
            assert player.validate() is True
            player.close()

    def test_periodic_scan_runs(self):
        """Scans run on the configured interval while a session is open."""
        services = make_services(security_check_interval=0.01)
        scanned = threading.Event()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services, environment_provider=ClientEnvironment,
                                 on_report=lambda report: scanned.set())
            player.open_video(FREE)
            assert scanned.wait(2.0)
            player.close()

    def test_no_scan_without_session(self):
        """Nothing is scanned when no session is active."""
        services = make_services()
        with TestClient(create_app(services)) as http:
            player = make_player(http, services, environment_provider=ClientEnvironment)
            assert player.run_security_check() is None
