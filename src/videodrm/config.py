"""
Configuration for the video DRM core.

Values resolve in three layers: dataclass defaults, then an optional YAML
file, then ``VIDEODRM_*`` environment variables. The YAML file is flat::

    session_timeout: 3600
    rate_limit_max: 100
    relaxed_mode: false
    watermark:
      opacity: 0.1
      spacing: 200

Nested sections (``watermark``, ``rate_limit``, ``framerate``) are flattened
with an underscore, so ``watermark.opacity`` sets ``watermark_opacity``.
"""

from __future__ import annotations

import os
import re
import secrets
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError


ENV_PREFIX = "VIDEODRM_"

# 24 hex chars, the catalog's document id format
DEFAULT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"
SESSION_ID_PATTERN = r"^[0-9a-fA-F-]{36}$"


@dataclass(frozen=True)
class DRMConfig:
    """Runtime settings. Numeric thresholds are defaults, not invariants."""

    session_timeout: int = 3600
    cleanup_interval: float = 300.0
    stream_url_ttl: int = 300
    security_check_interval: float = 30.0

    rate_limit_max: int = 100
    rate_limit_window: int = 15 * 60
    relaxed_mode: bool = False

    framerate_threshold: float = 10.0
    framerate_windows: int = 3
    devtools_threshold: int = 160

    watermark_spacing: int = 200
    watermark_rotation: float = -30.0
    watermark_opacity: float = 0.1
    watermark_font_size: int = 24
    watermark_length: int = 12

    jwt_secret: str = field(default_factory=lambda: secrets.token_hex(32), repr=False)
    token_secret: str = field(default_factory=lambda: secrets.token_hex(32), repr=False)
    storage_base_url: str = "https://storage.local/videos"
    storage_secret: str = field(default_factory=lambda: secrets.token_hex(32), repr=False)

    id_pattern: str = DEFAULT_ID_PATTERN
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        _check(self.session_timeout > 0, "session_timeout must be positive")
        _check(self.stream_url_ttl > 0, "stream_url_ttl must be positive")
        _check(self.cleanup_interval > 0, "cleanup_interval must be positive")
        _check(self.security_check_interval > 0, "security_check_interval must be positive")
        _check(self.rate_limit_max > 0, "rate_limit_max must be positive")
        _check(self.rate_limit_window > 0, "rate_limit_window must be positive")
        _check(self.framerate_threshold > 0, "framerate_threshold must be positive")
        _check(self.framerate_windows >= 1, "framerate_windows must be at least 1")
        _check(self.devtools_threshold >= 0, "devtools_threshold must not be negative")
        _check(self.watermark_spacing > 0, "watermark_spacing must be positive")
        _check(0.0 <= self.watermark_opacity <= 1.0, "watermark_opacity must be within [0, 1]")
        _check(self.watermark_font_size > 0, "watermark_font_size must be positive")
        _check(4 <= self.watermark_length <= 64, "watermark_length must be within [4, 64]")
        _check(bool(self.jwt_secret), "jwt_secret must not be empty")
        _check(bool(self.token_secret), "token_secret must not be empty")
        try:
            re.compile(self.id_pattern)
        except re.error as e:
            raise ConfigError(f"id_pattern is not a valid regex: {e}") from e

    @property
    def id_regex(self) -> re.Pattern:
        return re.compile(self.id_pattern)

    def with_overrides(self, **overrides: Any) -> "DRMConfig":
        return replace(self, **overrides)


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}".replace("-", "_")
        if isinstance(value, Mapping):
            flat.update(_flatten(value, prefix=name + "_"))
        else:
            flat[name] = value
    return flat


def _coerce(name: str, raw: Any, target: Any) -> Any:
    """Convert a YAML/env value to the type of the dataclass default."""
    if isinstance(target, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{name}: expected a boolean, got {raw!r}")
    try:
        if isinstance(target, int):
            return int(raw)
        if isinstance(target, float):
            return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected a number, got {raw!r}") from e
    return str(raw)


def read_config_file(path: str | Path) -> Dict[str, Any]:
    """Read a YAML config file into a flat dict."""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"{p} is not valid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{p} must contain a mapping at the top level")
    return _flatten(data)


def load_config(path: Optional[str | Path] = None, env: Optional[Mapping[str, str]] = None) -> DRMConfig:
    """Build a DRMConfig from defaults, an optional YAML file and the environment.

    Args:
        path: Optional YAML file. ``VIDEODRM_CONFIG`` is used when not given.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated, immutable DRMConfig.

    Raises:
        ConfigError: On unknown keys, bad types or out-of-range values.
    """
    env = os.environ if env is None else env
    defaults = DRMConfig()
    known = {f.name: getattr(defaults, f.name) for f in fields(DRMConfig)}

    if path is None:
        path = env.get(ENV_PREFIX + "CONFIG") or None

    overrides: Dict[str, Any] = {}
    if path is not None:
        for key, value in read_config_file(path).items():
            if key not in known:
                raise ConfigError(f"Unknown config key: {key}")
            overrides[key] = _coerce(key, value, known[key])

    for name, default in known.items():
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None:
            overrides[name] = _coerce(name, raw, default)

    return replace(defaults, **overrides)
