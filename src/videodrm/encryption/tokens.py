"""
Encrypted access-token claims.

Each DRM session carries an opaque access token: the session claims
(user, video, session, issue/expiry time) encrypted with a server-held key.
The key is derived from the configured ``token_secret`` with HKDF so the raw
secret is never used directly as a cipher key.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, UTC
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import DecryptionError
from .cipher import NONCE_SIZE, _b64decode, _b64encode

TOKEN_INFO = b"videodrm access-token v1"


def derive_key(secret: str | bytes, info: bytes = TOKEN_INFO) -> bytes:
    """Derive a 256-bit key from a configured secret."""
    raw = secret.encode("utf-8") if isinstance(secret, str) else secret
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info).derive(raw)


class AccessTokenCodec:
    """Seal and open session claims."""

    def __init__(self, secret: str | bytes):
        self._aes = AESGCM(derive_key(secret))

    def seal(self, user_id: str, video_id: str, session_id: str,
             issued_at: datetime, expires_at: datetime) -> str:
        claims = {
            "userId": user_id,
            "videoId": video_id,
            "sessionId": session_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        nonce = os.urandom(NONCE_SIZE)
        ct = self._aes.encrypt(nonce, json.dumps(claims, sort_keys=True).encode("utf-8"), None)
        return _b64encode(nonce + ct)

    def open(self, token: str, now: datetime | None = None, verify_expiry: bool = True) -> Dict[str, Any]:
        """Decrypt claims.

        Raises:
            DecryptionError: If the token is malformed, tampered or expired.
        """
        try:
            blob = _b64decode(token)
            claims = json.loads(self._aes.decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None))
        except (InvalidTag, ValueError) as e:
            raise DecryptionError("Invalid access token") from e
        if verify_expiry:
            now = now or datetime.now(UTC)
            if claims.get("exp", 0) <= now.timestamp():
                raise DecryptionError("Access token expired")
        return claims
