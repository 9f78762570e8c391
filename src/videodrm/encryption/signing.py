"""Short-lived signed storage URLs (stand-in for the storage subsystem's presigner)."""

from __future__ import annotations

import time
from typing import Callable, Optional
from urllib.parse import parse_qs, quote, urlencode, urlparse

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac


class HmacUrlSigner:
    """Sign ``base_url/<storage_key>?expires=..&signature=..`` with HMAC-SHA256.

    Implements the StorageUrlSigner protocol.
    """

    def __init__(self, base_url: str, secret: str | bytes, clock: Optional[Callable[[], float]] = None):
        self.base_url = base_url.rstrip("/")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self._clock = clock or time.time

    def _mac(self, path: str, expires: int) -> hmac.HMAC:
        h = hmac.HMAC(self._secret, hashes.SHA256())
        h.update(f"{path}\n{expires}".encode("utf-8"))
        return h

    def sign(self, storage_key: str, expires_in: int) -> str:
        if not storage_key:
            raise ValueError("storage_key must not be empty")
        path = quote(storage_key.lstrip("/"))
        expires = int(self._clock()) + int(expires_in)
        signature = self._mac(path, expires).finalize().hex()
        query = urlencode({"expires": expires, "disposition": "inline", "signature": signature})
        return f"{self.base_url}/{path}?{query}"

    def verify(self, url: str) -> bool:
        """True if ``url`` was signed by this signer and has not expired."""
        parsed = urlparse(url)
        prefix = urlparse(self.base_url).path.rstrip("/") + "/"
        if not parsed.path.startswith(prefix):
            return False
        path = parsed.path[len(prefix):]
        params = parse_qs(parsed.query)
        try:
            expires = int(params["expires"][0])
            signature = bytes.fromhex(params["signature"][0])
        except (KeyError, IndexError, ValueError):
            return False
        if expires < self._clock():
            return False
        try:
            self._mac(path, expires).verify(signature)
        except InvalidSignature:
            return False
        return True
