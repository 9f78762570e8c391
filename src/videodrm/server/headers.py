"""Security headers for protected content and DRM API responses."""

from __future__ import annotations

from typing import Dict, Optional

NO_CACHE = "no-cache, no-store, must-revalidate, private"

BASE_HEADERS: Dict[str, str] = {
    "Cache-Control": NO_CACHE,
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-Robots-Tag": "noindex, nofollow",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

DRM_MARKERS: Dict[str, str] = {
    "X-DRM-Enabled": "true",
    "X-Content-Protection": "DRM",
    "X-Download-Disabled": "true",
    "X-Recording-Disabled": "true",
}


def protected_headers(drm: bool = True) -> Dict[str, str]:
    """Headers every protected response carries."""
    headers = dict(BASE_HEADERS)
    if drm:
        headers.update(DRM_MARKERS)
    return headers


def stream_headers(session_id: Optional[str], user_id: Optional[str], video_id: Optional[str],
                   watermark: Optional[str] = None) -> Dict[str, str]:
    """Headers the client must echo to the CDN layer, plus content markers."""
    headers = {
        "X-Content-Type": "video/mp4",
        "X-Disposition": "inline",
    }
    for name, value in (("X-DRM-Session", session_id), ("X-User-ID", user_id),
                        ("X-Video-ID", video_id), ("X-Watermark", watermark)):
        if value:
            headers[name] = value
    return headers


def apply_headers(target, headers: Dict[str, str]) -> None:
    """Copy ``headers`` onto any mutable mapping of response headers."""
    for name, value in headers.items():
        if value is not None:
            target[name] = value
