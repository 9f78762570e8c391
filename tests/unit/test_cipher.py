"""Tests for the URL codec, access tokens and signed storage URLs."""

from datetime import datetime, timedelta, UTC

import pytest

from videodrm.encryption import cipher
from videodrm.encryption.signing import HmacUrlSigner
from videodrm.encryption.tokens import AccessTokenCodec, derive_key
from videodrm.errors import DecryptionError

SID = "0f8fad5b-d9cb-469f-a165-70867728950e"
OTHER_SID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
URL = "https://storage.local/videos/course/lesson-1.mp4?expires=1700000000&signature=abc"


class TestUrlCodec:
    """Test AES-GCM URL encryption."""

    def test_round_trip(self):
        """decrypt(encrypt(url)) returns the url."""
        key = cipher.generate_key()
        token = cipher.encrypt_url(URL, key, SID)
        assert token.startswith(cipher.PREFIX)
        assert URL not in token
        assert cipher.decrypt_url(token, key, SID) == URL

    def test_fresh_nonce(self):
        """Encrypting twice yields different tokens."""
        key = cipher.generate_key()
        assert cipher.encrypt_url(URL, key, SID) != cipher.encrypt_url(URL, key, SID)

    def test_wrong_key_fails(self):
        """Another key never yields plaintext."""
        token = cipher.encrypt_url(URL, cipher.generate_key(), SID)
        with pytest.raises(DecryptionError):
            cipher.decrypt_url(token, cipher.generate_key(), SID)

    def test_wrong_session_fails(self):
        """The session id is bound as associated data."""
        key = cipher.generate_key()
        token = cipher.encrypt_url(URL, key, SID)
        with pytest.raises(DecryptionError):
            cipher.decrypt_url(token, key, OTHER_SID)

    def test_tampering_detected(self):
        """Flipping a ciphertext character fails the integrity check."""
        key = cipher.generate_key()
        token = cipher.encrypt_url(URL, key, SID)
        i = len(token) - 5
        tampered = token[:i] + ("A" if token[i] != "A" else "B") + token[i + 1:]
        with pytest.raises(DecryptionError):
            cipher.decrypt_url(tampered, key, SID)

    @pytest.mark.parametrize("token", ["", "plain-url", "v1.", "v1.AAAA", "v2." + "A" * 60, "v1.!!!@@@"])
    def test_malformed_tokens(self, token):
        """Malformed tokens raise DecryptionError."""
        with pytest.raises(DecryptionError):
            cipher.decrypt_url(token, cipher.generate_key(), SID)

    def test_bad_key_length_rejected(self):
        """Encryption refuses short keys."""
        with pytest.raises(ValueError):
            cipher.encrypt_url(URL, b"short", SID)


class TestAccessTokens:
    """Test encrypted session claims."""

    def test_seal_and_open(self):
        """Claims survive a seal/open cycle."""
        codec = AccessTokenCodec("secret")
        now = datetime.now(UTC)
        token = codec.seal("user", "video", SID, now, now + timedelta(hours=1))
        claims = codec.open(token, now=now)
        assert claims["userId"] == "user" and claims["sessionId"] == SID

    def test_expired_token(self):
        """Expired claims are rejected."""
        codec = AccessTokenCodec("secret")
        now = datetime.now(UTC)
        token = codec.seal("user", "video", SID, now, now + timedelta(seconds=10))
        with pytest.raises(DecryptionError):
            codec.open(token, now=now + timedelta(seconds=11))
        assert codec.open(token, now=now + timedelta(seconds=11), verify_expiry=False)["videoId"] == "video"

    def test_other_secret_rejected(self):
        """A token only opens under the secret that sealed it."""
        now = datetime.now(UTC)
        token = AccessTokenCodec("one").seal("u", "v", SID, now, now + timedelta(hours=1))
        with pytest.raises(DecryptionError):
            AccessTokenCodec("two").open(token, now=now)

    def test_derive_key(self):
        """Key derivation is deterministic and 32 bytes."""
        assert derive_key("s") == derive_key(b"s")
        assert len(derive_key("s")) == 32
        assert derive_key("s") != derive_key("t")


class TestHmacUrlSigner:
    """Test signed storage URLs."""

    def test_sign_and_verify(self):
        """Signed URLs verify until they expire."""
        now = [1_700_000_000.0]
        signer = HmacUrlSigner("https://storage.local/videos", "secret", clock=lambda: now[0])
        url = signer.sign("course/lesson 1.mp4", 300)
        assert url.startswith("https://storage.local/videos/course/lesson%201.mp4?")
        assert "disposition=inline" in url
        assert signer.verify(url) is True
        now[0] += 301
        assert signer.verify(url) is False

    def test_tampered_url_rejected(self):
        """Changing the path or the secret invalidates the signature."""
        signer = HmacUrlSigner("https://storage.local/videos", "secret")
        url = signer.sign("course/a.mp4", 300)
        assert signer.verify(url.replace("a.mp4", "b.mp4")) is False
        assert HmacUrlSigner("https://storage.local/videos", "other").verify(url) is False

    def test_empty_key_rejected(self):
        """An empty storage key cannot be signed."""
        with pytest.raises(ValueError):
            HmacUrlSigner("https://storage.local", "secret").sign("", 60)
