"""
Session-bound forensic watermarks.

The payload is a deterministic one-way digest of (user, video, timestamp),
truncated for display. It is both an on-screen deterrent and a trace for
post-hoc leak attribution. The overlay tiles the payload across the whole
render surface so a cropped screenshot still carries at least one mark.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Tuple

DEFAULT_SPACING = 200
DEFAULT_ROTATION = -30.0
DEFAULT_OPACITY = 0.1
DEFAULT_FONT_SIZE = 24
DEFAULT_LENGTH = 12


def _timestamp_ms(timestamp: datetime | int | float) -> int:
    if isinstance(timestamp, datetime):
        return int(timestamp.timestamp() * 1000)
    return int(timestamp)


def derive_payload(user_id: str, video_id: str, timestamp: datetime | int | float,
                   length: int = DEFAULT_LENGTH) -> str:
    """Return ``<first 4 chars of user>-<hex digest prefix>``.

    Same inputs always give the same payload; any changed input changes it.
    Fields are length-prefixed so ("ab", "c") and ("a", "bc") never collide.
    """
    if length < 4 or length > 64:
        raise ValueError("length must be within [4, 64]")
    h = hashlib.sha256()
    for part in (user_id, video_id, str(_timestamp_ms(timestamp))):
        data = part.encode("utf-8")
        h.update(len(data).to_bytes(4, "big"))
        h.update(data)
    return f"{user_id[:4]}-{h.hexdigest()[:length]}"


@dataclass(frozen=True)
class WatermarkOverlay:
    """Render description of a tiled, rotated, low-opacity text overlay."""

    text: str
    width: int
    height: int
    rotation: float = DEFAULT_ROTATION
    tile_spacing: int = DEFAULT_SPACING
    opacity: float = DEFAULT_OPACITY
    font_size: int = DEFAULT_FONT_SIZE
    tiles: Tuple[Tuple[int, int], ...] = field(default_factory=tuple)

    @property
    def fill_style(self) -> str:
        return f"rgba(255, 255, 255, {self.opacity})"

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "width": self.width,
            "height": self.height,
            "rotation": self.rotation,
            "tileSpacing": self.tile_spacing,
            "opacity": self.opacity,
            "fontSize": self.font_size,
            "fillStyle": self.fill_style,
            "tiles": [list(t) for t in self.tiles],
        }


def tile_positions(width: int, height: int, spacing: int) -> List[Tuple[int, int]]:
    """Grid anchors covering [0, width] x [0, height] inclusive of both edges."""
    cols = math.ceil(width / spacing) + 1
    rows = math.ceil(height / spacing) + 1
    return [(x * spacing, y * spacing) for y in range(rows) for x in range(cols)]


def build_overlay(payload: str, width: int, height: int, spacing: int = DEFAULT_SPACING,
                  rotation: float = DEFAULT_ROTATION, opacity: float = DEFAULT_OPACITY,
                  font_size: int = DEFAULT_FONT_SIZE) -> WatermarkOverlay:
    """Build the overlay description for a ``width`` x ``height`` surface."""
    if not payload:
        raise ValueError("payload must not be empty")
    if width <= 0 or height <= 0:
        raise ValueError("surface size must be positive")
    if spacing <= 0:
        raise ValueError("spacing must be positive")
    if not 0.0 <= opacity <= 1.0:
        raise ValueError("opacity must be within [0, 1]")
    return WatermarkOverlay(
        text=payload,
        width=int(width),
        height=int(height),
        rotation=rotation,
        tile_spacing=spacing,
        opacity=opacity,
        font_size=font_size,
        tiles=tuple(tile_positions(int(width), int(height), spacing)),
    )


@dataclass(frozen=True)
class ForensicWatermark:
    watermark: str
    user_id: str
    video_id: str
    session_id: str
    timestamp: int
    hash: str

    def to_dict(self) -> dict:
        return {
            "watermark": self.watermark,
            "userId": self.user_id,
            "videoId": self.video_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "hash": self.hash,
        }


def forensic_watermark(user_id: str, video_id: str, session_id: str,
                       timestamp: datetime | int | float) -> ForensicWatermark:
    """Identifier prefixes plus a 16-char digest for leak attribution."""
    ts = _timestamp_ms(timestamp)
    digest = hashlib.sha256(f"{user_id}{video_id}{session_id}{ts}".encode("utf-8")).hexdigest()[:16]
    return ForensicWatermark(
        watermark=f"{user_id[:4]}-{digest}",
        user_id=user_id[:8],
        video_id=video_id[:8],
        session_id=session_id[:8],
        timestamp=ts,
        hash=digest,
    )
