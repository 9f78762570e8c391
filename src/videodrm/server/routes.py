"""
DRM API routes (mounted under ``/api/drm``).

  GET    /videos/{video_id}                     video + DRM session + watermark
  GET    /courses/{course_id}/videos            same, batched per video
  POST   /decrypt-url                           {encryptedUrl, sessionId} -> {decryptedUrl}
  POST   /sessions/{session_id}/validate        {videoId} -> {valid}
  DELETE /sessions/{session_id}                 revoke (idempotent)
  POST   /sessions/{session_id}/security-report scan a reported client environment
  GET    /stream/{video_id}                     CDN gate, redirects to storage
  GET    /stats                                 admin only
"""

from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from ..access.catalog import VideoRecord
from ..access.decision import AccessDecision, LockReason
from ..detection.base import ClientEnvironment
from ..errors import AuthorizationError, DRMError, InvalidRequestError, NotFoundError, SessionExpiredError
from ..session.registry import SessionState
from ..utils.logs import security_event, short_id
from ..watermarking.overlay import forensic_watermark
from .app import DRMServices
from .auth import Principal
from .headers import apply_headers, protected_headers
from .pipeline import SESSION_ID_RE, RequestContext

LOGGER = logging.getLogger(__name__)

ADMIN_URL_TTL = 3600

router = APIRouter()


class DecryptUrlRequest(BaseModel):
    encryptedUrl: str = Field(min_length=1)
    sessionId: str = Field(min_length=1)


class ValidateSessionRequest(BaseModel):
    videoId: str = Field(min_length=1)


def get_services(request: Request) -> DRMServices:
    return request.app.state.services


def guard(check_access: bool = False, require_cdn_headers: bool = False, admin_only: bool = False):
    """Dependency running the security pipeline for one route."""

    def dependency(request: Request, response: Response) -> RequestContext:
        services = get_services(request)
        ctx = RequestContext.build(
            request.method,
            request.url.path,
            request.client.host if request.client else None,
            request.headers,
            request.path_params,
            check_access=check_access,
            require_cdn_headers=require_cdn_headers,
            admin_only=admin_only,
        )
        services.pipeline.run(ctx)
        apply_headers(response.headers, ctx.response_headers)
        return ctx

    return dependency


def _video_drm(services: DRMServices, principal: Principal, video: VideoRecord,
               decision: AccessDecision) -> Dict[str, Any]:
    """Session + encrypted URL for one unlocked video. Admins bypass DRM."""
    drm: Dict[str, Any] = {
        "enabled": False,
        "sessionId": None,
        "encryptedUrl": None,
        "securityHeaders": {},
        "expiresIn": 0,
        "watermarkData": None,
    }
    if not decision.has_access:
        return drm
    if principal.is_admin:
        if video.storage_key:
            drm["encryptedUrl"] = services.signer.sign(video.storage_key, ADMIN_URL_TTL)
            drm["expiresIn"] = ADMIN_URL_TTL
        return drm

    sessions = services.sessions
    session = sessions.create_session(principal.user_id, video.id, decision, course_id=video.course_id)
    drm.update(
        enabled=True,
        sessionId=session.session_id,
        expiresIn=session.expires_in(sessions.clock()),
        sessionExpiresAt=int(session.expires_at.timestamp() * 1000),
        watermarkData=session.watermark_payload,
    )
    if video.storage_key:
        try:
            storage_url = services.signer.sign(video.storage_key, services.config.stream_url_ttl)
        except Exception as e:
            LOGGER.exception("Failed to sign storage URL for video %s", video.id)
            sessions.revoke_session(session.session_id)
            raise DRMError("Failed to initialize video security") from e
        drm.update(sessions.issue_stream(session, storage_url).to_dict())
    return drm


def _security_flags(enabled: bool) -> Dict[str, bool]:
    return {
        "drmEnabled": enabled,
        "watermarkingEnabled": enabled,
        "screenRecordingDetection": enabled,
        "extensionDetection": enabled,
        "sessionBasedAccess": enabled,
    }


@router.get("/videos/{video_id}")
def get_video(video_id: str, request: Request, ctx: RequestContext = Depends(guard(check_access=True))):
    services = get_services(request)
    principal = ctx.principal
    video = services.catalog.get_video(video_id)
    if video is None:
        # removed from the catalog after the access check
        raise AuthorizationError("Access denied to this video",
                                 lock_reason=LockReason.VIDEO_NOT_FOUND.value)

    drm = _video_drm(services, principal, video, ctx.decision)
    forensic = forensic_watermark(principal.user_id, video.id, drm["sessionId"] or "admin",
                                  datetime.now(UTC))
    video_data = video.to_dict()
    video_data.update(locked=False, hasAccess=True)
    return {
        "success": True,
        "data": {
            "video": video_data,
            "drm": drm,
            "forensic": forensic.to_dict(),
            "security": _security_flags(not principal.is_admin),
        },
    }


@router.get("/courses/{course_id}/videos")
def get_course_videos(course_id: str, request: Request, ctx: RequestContext = Depends(guard())):
    services = get_services(request)
    principal = ctx.principal
    videos = []
    for video, decision in services.access.evaluate_course(principal.user_id, course_id, principal.role):
        item = video.to_dict()
        item.update(
            locked=decision.is_locked,
            hasAccess=decision.has_access,
            lockReason=decision.lock_reason.value if decision.lock_reason else None,
            drm=_video_drm(services, principal, video, decision),
        )
        videos.append(item)
    return {
        "success": True,
        "data": {
            "course": {"id": course_id, "videos": videos},
            "userHasPurchased": services.access.owns_course(principal.user_id, course_id, principal.role),
            "drm": {
                "enabled": not principal.is_admin,
                "totalSessions": services.sessions.stats()["activeSessions"],
            },
        },
    }


@router.post("/decrypt-url")
def decrypt_url(body: DecryptUrlRequest, request: Request, ctx: RequestContext = Depends(guard())):
    if not SESSION_ID_RE.match(body.sessionId):
        raise InvalidRequestError("Invalid session format")
    sessions = get_services(request).sessions
    decrypted = sessions.decrypt_url(body.sessionId, body.encryptedUrl, user_id=ctx.principal.user_id)
    session = sessions.get_session(body.sessionId)
    return {
        "success": True,
        "data": {
            "decryptedUrl": decrypted,
            "expiresIn": session.expires_in(sessions.clock()) if session else 0,
        },
    }


@router.post("/sessions/{session_id}/validate")
def validate_session(session_id: str, body: ValidateSessionRequest, request: Request,
                     ctx: RequestContext = Depends(guard())):
    sessions = get_services(request).sessions
    valid = sessions.validate_session(session_id, user_id=ctx.principal.user_id, video_id=body.videoId)
    if ctx.principal.is_admin:
        state = sessions.state(session_id)
    else:
        state = sessions.state_for(session_id, ctx.principal.user_id)
    data: Dict[str, Any] = {"valid": valid, "state": state.value}
    session = sessions.get_session(session_id) if valid else None
    if session is not None:
        data["session"] = {
            "sessionId": session.session_id,
            "expiresAt": int(session.expires_at.timestamp() * 1000),
            "expiresIn": session.expires_in(sessions.clock()),
        }
    return {"success": True, "data": data}


@router.delete("/sessions/{session_id}")
def revoke_session(session_id: str, request: Request, ctx: RequestContext = Depends(guard())):
    sessions = get_services(request).sessions
    state = sessions.state(session_id)
    owner = sessions.registry.owner(session_id)
    if owner is not None and owner != ctx.principal.user_id and not ctx.principal.is_admin:
        security_event("revoke_denied", "attempt to revoke a foreign session", user=ctx.principal.user_id,
                       session=short_id(session_id))
        raise AuthorizationError("Cannot revoke another user's session", code="invalid_session")
    changed = sessions.revoke_session(session_id)
    return {
        "success": True,
        "message": "DRM session revoked successfully",
        "data": {"sessionId": session_id, "revoked": changed or state is SessionState.REVOKED},
    }


@router.post("/sessions/{session_id}/security-report")
def security_report(session_id: str, request: Request, environment: Dict[str, Any] = Body(...),
                    ctx: RequestContext = Depends(guard())):
    services = get_services(request)
    if not services.sessions.validate_session(session_id, user_id=ctx.principal.user_id):
        raise AuthorizationError("Invalid or expired DRM session", code="invalid_session")
    try:
        env = ClientEnvironment.from_dict(environment)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Malformed environment report: {e}") from e
    report = services.new_engine().scan(env)
    if not report.is_secure:
        security_event("client_violation", "; ".join(report.messages), user=ctx.principal.user_id,
                       session=short_id(session_id))
    return {"success": True, "data": report.to_dict()}


@router.get("/stream/{video_id}")
def stream(video_id: str, request: Request,
           ctx: RequestContext = Depends(guard(check_access=True, require_cdn_headers=True))):
    services = get_services(request)
    session_id = ctx.headers["x-drm-session"]
    if not services.sessions.validate_session(session_id, user_id=ctx.principal.user_id, video_id=video_id):
        state = services.sessions.state(session_id)
        if state is SessionState.EXPIRED:
            raise SessionExpiredError(session_id)
        raise AuthorizationError("Invalid DRM session", code="invalid_session")
    video = services.catalog.get_video(video_id)
    if video is None or not video.storage_key:
        raise NotFoundError("Video content not found")
    url = services.signer.sign(video.storage_key, services.config.stream_url_ttl)
    headers = protected_headers()
    headers.update(ctx.rate_limit_headers)
    return RedirectResponse(url, status_code=307, headers=headers)


@router.get("/stats")
def stats(request: Request, ctx: RequestContext = Depends(guard(admin_only=True))):
    return {
        "success": True,
        "data": {
            "sessions": get_services(request).sessions.stats(),
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }
