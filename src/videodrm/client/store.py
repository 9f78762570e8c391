"""
Scoped persistent key-value store for client-side session state.

One JSON file per scope (the browser local-storage analogue). The store is a
cache: the server stays authoritative and callers drop entries on any failed
validation. Without a directory the store lives in memory only.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)

_SCOPE_RE = re.compile(r"[^A-Za-z0-9_.-]")


class SessionStore:
    def __init__(self, scope: str, directory: Optional[str | Path] = None):
        """Open (or create) the store for ``scope``.

        Args:
            scope: Namespace, typically the user id
            directory: Where ``<scope>.json`` is kept; None keeps it in memory
        """
        if not scope:
            raise ValueError("scope must not be empty")
        self.scope = scope
        self.path = Path(directory) / f"{_SCOPE_RE.sub('_', scope)}.json" if directory else None
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            # a corrupt cache is discarded, the server still holds the truth
            LOGGER.warning("Discarding unreadable session store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._data, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._write()

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            del self._data[key]
            self._write()
            return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            if self.path is not None and self.path.exists():
                self.path.unlink()

    def keys(self):
        with self._lock:
            return list(self._data)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data
