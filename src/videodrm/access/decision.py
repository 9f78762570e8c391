"""
Access decision engine.

A pure function of purchase, role and free-preview state. Decisions are
computed fresh per request and never persisted; any lookup failure yields a
locked decision with reason ``error`` (fail closed).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .catalog import PurchaseLedger, VideoCatalog, VideoRecord

LOGGER = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        if value is not None and str(value).lower() == cls.ADMIN.value:
            return cls.ADMIN
        return cls.STUDENT


class LockReason(str, Enum):
    PURCHASE_REQUIRED = "purchase_required"
    VIDEO_NOT_FOUND = "video_not_found"
    ERROR = "error"


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    is_locked: bool
    lock_reason: Optional[LockReason] = None

    @classmethod
    def granted(cls) -> "AccessDecision":
        return cls(has_access=True, is_locked=False, lock_reason=None)

    @classmethod
    def denied(cls, reason: LockReason) -> "AccessDecision":
        return cls(has_access=False, is_locked=True, lock_reason=reason)

    def to_dict(self) -> dict:
        return {
            "hasAccess": self.has_access,
            "isLocked": self.is_locked,
            "lockReason": self.lock_reason.value if self.lock_reason else None,
        }


class AccessDecisionEngine:
    """Combines catalog, purchase and role signals into an AccessDecision."""

    def __init__(self, catalog: VideoCatalog, purchases: PurchaseLedger):
        self.catalog = catalog
        self.purchases = purchases

    def evaluate(self, user_id: str, video_id: str, role: Role | str | None = None) -> AccessDecision:
        """Decide whether ``user_id`` may view ``video_id``.

        Args:
            user_id: Requesting user
            video_id: Requested video
            role: Caller role; admins bypass purchase checks

        Returns:
            AccessDecision (never raises)
        """
        role = role if isinstance(role, Role) else Role.parse(role)
        try:
            video = self.catalog.get_video(video_id)
            if video is None:
                return AccessDecision.denied(LockReason.VIDEO_NOT_FOUND)
            return self._decide(user_id, video, role)
        except Exception:
            LOGGER.exception("Access check failed for user=%s video=%s", user_id, video_id)
            return AccessDecision.denied(LockReason.ERROR)

    def evaluate_course(self, user_id: str, course_id: str,
                        role: Role | str | None = None) -> List[Tuple[VideoRecord, AccessDecision]]:
        """Per-video decisions for a course listing.

        Catalog records are returned untouched; the lock state travels
        alongside each record so shared catalog data is never mutated.
        """
        role = role if isinstance(role, Role) else Role.parse(role)
        try:
            videos = self.catalog.list_course_videos(course_id)
        except Exception:
            LOGGER.exception("Course listing failed for user=%s course=%s", user_id, course_id)
            return []
        if role is Role.ADMIN:
            return [(v, AccessDecision.granted()) for v in videos]
        try:
            owned = self.purchases.has_purchased(user_id, course_id)
        except Exception:
            LOGGER.exception("Purchase lookup failed for user=%s course=%s", user_id, course_id)
            return [(v, AccessDecision.denied(LockReason.ERROR)) for v in videos]
        return [(v, self._from_ownership(v, owned)) for v in videos]

    def owns_course(self, user_id: str, course_id: str, role: Role | str | None = None) -> bool:
        """Purchase status for a course; False on lookup failure."""
        role = role if isinstance(role, Role) else Role.parse(role)
        if role is Role.ADMIN:
            return True
        try:
            return bool(self.purchases.has_purchased(user_id, course_id))
        except Exception:
            LOGGER.exception("Purchase lookup failed for user=%s course=%s", user_id, course_id)
            return False

    def _decide(self, user_id: str, video: VideoRecord, role: Role) -> AccessDecision:
        if role is Role.ADMIN:
            return AccessDecision.granted()
        if video.is_free_preview:
            return AccessDecision.granted()
        return self._from_ownership(video, self.purchases.has_purchased(user_id, video.course_id))

    @staticmethod
    def _from_ownership(video: VideoRecord, owned: bool) -> AccessDecision:
        if owned or video.is_free_preview:
            return AccessDecision.granted()
        return AccessDecision.denied(LockReason.PURCHASE_REQUIRED)


def evaluate_access(catalog: VideoCatalog, purchases: PurchaseLedger, user_id: str,
                    video_id: str, role: Role | str | None = None) -> AccessDecision:
    """Functional form of AccessDecisionEngine.evaluate."""
    return AccessDecisionEngine(catalog, purchases).evaluate(user_id, video_id, role)
