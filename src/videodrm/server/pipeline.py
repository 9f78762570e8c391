"""
Server-side request gate for protected DRM endpoints.

Stages run in order and any failure short-circuits before storage is
touched:

1. validate_request: bearer token, path id formats, CDN headers (400/401/403)
2. rate_limit: sliding window per IP, skipped for admins and relaxed mode (429)
3. check_access: access decision for the requested video (403)
4. inject_headers: no-cache, frame-deny, nosniff, noindex and DRM markers
5. audit: one structured audit line, also for rejected requests
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from ..access.decision import AccessDecision, AccessDecisionEngine
from ..config import DRMConfig, SESSION_ID_PATTERN
from ..errors import AuthorizationError, DRMError, InvalidRequestError
from ..utils.logs import audit, security_event
from .auth import Principal, TokenIssuer, bearer_token
from .headers import protected_headers
from .rate_limit import SlidingWindowRateLimiter

LOGGER = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)
CDN_HEADERS = ("x-drm-session", "x-user-id", "x-video-id")


@dataclass
class RequestContext:
    """Per-request state threaded through the pipeline stages."""

    method: str
    path: str
    client_ip: str
    headers: Dict[str, str]
    path_params: Dict[str, str] = field(default_factory=dict)
    check_access: bool = False
    require_cdn_headers: bool = False
    admin_only: bool = False
    principal: Optional[Principal] = None
    decision: Optional[AccessDecision] = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    rate_limit_headers: Dict[str, str] = field(default_factory=dict)
    status: int = 200
    outcome: str = "allowed"

    @classmethod
    def build(cls, method: str, path: str, client_ip: Optional[str], headers: Mapping[str, str],
              path_params: Optional[Mapping[str, str]] = None, **options) -> "RequestContext":
        return cls(
            method=method.upper(),
            path=path,
            client_ip=client_ip or "unknown",
            headers={k.lower(): v for k, v in headers.items()},
            path_params=dict(path_params or {}),
            **options,
        )

    @property
    def video_id(self) -> Optional[str]:
        return self.path_params.get("video_id")

    @property
    def session_id(self) -> Optional[str]:
        return self.path_params.get("session_id") or self.headers.get("x-drm-session")


Stage = Callable[[RequestContext], None]


class SecurityPipeline:
    def __init__(self, config: DRMConfig, tokens: TokenIssuer, limiter: SlidingWindowRateLimiter,
                 access: AccessDecisionEngine):
        self.config = config
        self.tokens = tokens
        self.limiter = limiter
        self.access = access
        self.id_re = config.id_regex
        self.stages: List[Stage] = [self.validate_request, self.rate_limit, self.check_access,
                                    self.inject_headers]

    def run(self, ctx: RequestContext) -> RequestContext:
        try:
            for stage in self.stages:
                stage(ctx)
        except DRMError as e:
            ctx.status = e.status
            ctx.outcome = e.code
            self.audit(ctx)
            raise
        self.audit(ctx)
        return ctx

    # stages

    def validate_request(self, ctx: RequestContext) -> None:
        ctx.principal = self.tokens.verify(bearer_token(ctx.headers))
        for name in ("video_id", "course_id"):
            value = ctx.path_params.get(name)
            if value is not None and not self.id_re.match(value):
                raise InvalidRequestError(f"Invalid {name.replace('_', ' ')} format")
        sid = ctx.path_params.get("session_id")
        if sid is not None and not SESSION_ID_RE.match(sid):
            raise InvalidRequestError("Invalid session format")
        self._validate_cdn_headers(ctx)
        if ctx.admin_only and not ctx.principal.is_admin:
            raise AuthorizationError("Admin access required", code="admin_required")

    def _validate_cdn_headers(self, ctx: RequestContext) -> None:
        present = {h: ctx.headers.get(h) for h in CDN_HEADERS if ctx.headers.get(h)}
        if ctx.require_cdn_headers:
            missing = [h for h in CDN_HEADERS if h not in present]
            if missing:
                raise InvalidRequestError(f"Missing required headers: {', '.join(missing)}")
        if "x-drm-session" in present and not SESSION_ID_RE.match(present["x-drm-session"]):
            raise InvalidRequestError("Invalid session format")
        for name in ("x-user-id", "x-video-id"):
            if name in present and not self.id_re.match(present[name]):
                raise InvalidRequestError(f"Invalid {name} header format")
        if "x-user-id" in present and present["x-user-id"] != ctx.principal.user_id:
            security_event("identity_mismatch", "X-User-ID does not match the token", ip=ctx.client_ip,
                           user=ctx.principal.user_id, claimed=present["x-user-id"])
            raise AuthorizationError("Invalid DRM session", code="invalid_session")
        if "x-video-id" in present and ctx.video_id and present["x-video-id"] != ctx.video_id:
            raise AuthorizationError("Invalid DRM session", code="invalid_session")

    def rate_limit(self, ctx: RequestContext) -> None:
        if self.config.relaxed_mode or (ctx.principal and ctx.principal.is_admin):
            return
        try:
            status = self.limiter.check(ctx.client_ip)
        except DRMError:
            security_event("rate_limit_exceeded", "request rejected", ip=ctx.client_ip,
                           user=ctx.principal.user_id if ctx.principal else None)
            raise
        ctx.rate_limit_headers = status.headers()

    def check_access(self, ctx: RequestContext) -> None:
        if not ctx.check_access or ctx.video_id is None:
            return
        decision = self.access.evaluate(ctx.principal.user_id, ctx.video_id, ctx.principal.role)
        ctx.decision = decision
        if not decision.has_access:
            reason = decision.lock_reason.value if decision.lock_reason else "error"
            security_event("access_denied", "video access denied", level=logging.INFO,
                           ip=ctx.client_ip, user=ctx.principal.user_id, video=ctx.video_id, reason=reason)
            raise AuthorizationError("Access denied to this video", lock_reason=reason)

    def inject_headers(self, ctx: RequestContext) -> None:
        ctx.response_headers.update(protected_headers())
        ctx.response_headers.update(ctx.rate_limit_headers)

    def audit(self, ctx: RequestContext) -> None:
        audit(
            ctx.outcome,
            ctx.status,
            ip=ctx.client_ip,
            method=ctx.method,
            path=ctx.path,
            user=ctx.principal.user_id if ctx.principal else None,
            role=ctx.principal.role.value if ctx.principal else None,
            session=ctx.session_id,
            video=ctx.video_id or ctx.headers.get("x-video-id"),
            user_agent=ctx.headers.get("user-agent"),
        )
