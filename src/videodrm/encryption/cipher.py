from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError


# Token format:
# PREFIX ("v1.") | urlsafe-base64( nonce (12) | ciphertext+tag )
# The session id is bound in as associated data, so a token only opens under
# the key *and* session it was issued for.

PREFIX = "v1."
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def encrypt_url(url: str, key: bytes, session_id: str) -> str:
    """Encrypt a storage URL under a session key.

    Args:
        url: The raw (signed) storage URL
        key: 256-bit session key
        session_id: Session the ciphertext is bound to

    Returns:
        Printable token safe to hand to the client
    """
    if not url:
        raise ValueError("url must not be empty")
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")
    nonce = os.urandom(NONCE_SIZE)
    ct = AESGCM(key).encrypt(nonce, url.encode("utf-8"), session_id.encode("utf-8"))
    return PREFIX + _b64encode(nonce + ct)


def decrypt_url(token: str, key: bytes, session_id: str) -> str:
    """Decrypt a token produced by `encrypt_url`.

    Raises:
        DecryptionError: Malformed token, wrong key, wrong session or tampering.
            Never returns partial or wrong plaintext.
    """
    if not isinstance(token, str) or not token.startswith(PREFIX):
        raise DecryptionError("Invalid encrypted URL format")
    try:
        blob = _b64decode(token[len(PREFIX):])
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Invalid encrypted URL encoding") from e
    if len(blob) < NONCE_SIZE + TAG_SIZE + 1:
        raise DecryptionError("Truncated encrypted URL")
    if len(key) != KEY_SIZE:
        raise DecryptionError("Invalid session key")
    nonce, ct = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        pt = AESGCM(key).decrypt(nonce, ct, session_id.encode("utf-8"))
    except InvalidTag as e:
        raise DecryptionError("Encrypted URL failed integrity check") from e
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted URL is not valid text") from e
