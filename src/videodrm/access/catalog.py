"""
Collaborator interfaces consumed by the DRM core.

The catalog, commerce and storage subsystems live outside this package. The
core only reads from them through these protocols:

- VideoCatalog: video metadata lookup
- PurchaseLedger: course ownership
- StorageUrlSigner: raw signed storage URL for a storage key

In-memory implementations back the development server and the tests; they
can be seeded from a YAML fixture file.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Set

import yaml


@dataclass(frozen=True)
class VideoRecord:
    """Read-only video metadata owned by the catalog subsystem."""

    id: str
    course_id: str
    is_free_preview: bool = False
    storage_key: Optional[str] = None
    title: str = ""
    order: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "courseId": self.course_id,
            "title": self.title,
            "order": self.order,
            "isFreePreview": self.is_free_preview,
        }


class VideoCatalog(Protocol):
    def get_video(self, video_id: str) -> Optional[VideoRecord]: ...

    def list_course_videos(self, course_id: str) -> List[VideoRecord]: ...


class PurchaseLedger(Protocol):
    def has_purchased(self, user_id: str, course_id: str) -> bool: ...


class StorageUrlSigner(Protocol):
    def sign(self, storage_key: str, expires_in: int) -> str: ...


class InMemoryCatalog:
    """Dict-backed VideoCatalog."""

    def __init__(self, videos: Iterable[VideoRecord] = ()):
        self._videos: Dict[str, VideoRecord] = {}
        for video in videos:
            self.add(video)

    def add(self, video: VideoRecord) -> VideoRecord:
        self._videos[video.id] = video
        return video

    def get_video(self, video_id: str) -> Optional[VideoRecord]:
        return self._videos.get(video_id)

    def list_course_videos(self, course_id: str) -> List[VideoRecord]:
        videos = [v for v in self._videos.values() if v.course_id == course_id]
        return sorted(videos, key=lambda v: (v.order, v.id))

    def __len__(self) -> int:
        return len(self._videos)


class InMemoryPurchaseLedger:
    """Set-of-courses-per-user PurchaseLedger."""

    def __init__(self, purchases: Optional[Dict[str, Iterable[str]]] = None):
        self._lock = threading.Lock()
        self._owned: Dict[str, Set[str]] = {}
        for user_id, courses in (purchases or {}).items():
            for course_id in courses:
                self.grant(user_id, course_id)

    def grant(self, user_id: str, course_id: str) -> None:
        with self._lock:
            self._owned.setdefault(user_id, set()).add(course_id)

    def purchases_for(self, user_id: str) -> Set[str]:
        with self._lock:
            return set(self._owned.get(user_id, ()))

    def has_purchased(self, user_id: str, course_id: str) -> bool:
        return course_id in self.purchases_for(user_id)


def load_fixtures(path: str | Path) -> tuple[InMemoryCatalog, InMemoryPurchaseLedger]:
    """Load a catalog and purchase ledger from a YAML fixture file.

    Expected layout::

        videos:
          - id: 64b7f0c2a1b2c3d4e5f60718
            course_id: 64b7f0c2a1b2c3d4e5f60001
            is_free_preview: true
            storage_key: courses/intro.mp4
        purchases:
          64b7f0c2a1b2c3d4e5f6aaaa: [64b7f0c2a1b2c3d4e5f60001]
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: fixture file must contain a mapping")
    catalog = InMemoryCatalog()
    for item in data.get("videos") or []:
        catalog.add(VideoRecord(
            id=str(item["id"]),
            course_id=str(item["course_id"]),
            is_free_preview=bool(item.get("is_free_preview", False)),
            storage_key=item.get("storage_key"),
            title=str(item.get("title", "")),
            order=int(item.get("order", 0)),
        ))
    purchases = {str(user): [str(c) for c in courses] for user, courses in (data.get("purchases") or {}).items()}
    return catalog, InMemoryPurchaseLedger(purchases)
