"""
FastAPI application factory.

All components are constructed explicitly and injected through
``DRMServices``; the app's lifespan starts and stops the session manager so
each test can run against an isolated instance.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..access.catalog import (
    InMemoryCatalog,
    InMemoryPurchaseLedger,
    PurchaseLedger,
    StorageUrlSigner,
    VideoCatalog,
)
from ..access.decision import AccessDecisionEngine
from ..config import DRMConfig
from ..detection.engine import AntiPiracyEngine
from ..encryption.signing import HmacUrlSigner
from ..errors import DRMError, RateLimitExceeded
from ..session.manager import Clock, SessionManager
from ..utils.periodic import PeriodicTask
from .auth import TokenIssuer
from .headers import protected_headers
from .pipeline import SecurityPipeline
from .rate_limit import SlidingWindowRateLimiter

LOGGER = logging.getLogger(__name__)


@dataclass
class DRMServices:
    config: DRMConfig
    catalog: VideoCatalog
    purchases: PurchaseLedger
    signer: StorageUrlSigner
    access: AccessDecisionEngine
    sessions: SessionManager
    tokens: TokenIssuer
    limiter: SlidingWindowRateLimiter
    pipeline: SecurityPipeline
    _prune: PeriodicTask = field(init=False, repr=False)

    def __post_init__(self):
        self._prune = PeriodicTask(self.config.cleanup_interval, self.prune_rate_limits,
                                   name="drm-rate-limit-prune")

    @classmethod
    def build(cls, config: Optional[DRMConfig] = None, catalog: Optional[VideoCatalog] = None,
              purchases: Optional[PurchaseLedger] = None, signer: Optional[StorageUrlSigner] = None,
              clock: Optional[Clock] = None,
              monotonic: Optional[Callable[[], float]] = None) -> "DRMServices":
        config = config or DRMConfig()
        catalog = catalog if catalog is not None else InMemoryCatalog()
        purchases = purchases if purchases is not None else InMemoryPurchaseLedger()
        signer = signer or HmacUrlSigner(config.storage_base_url, config.storage_secret)
        access = AccessDecisionEngine(catalog, purchases)
        tokens = TokenIssuer(config.jwt_secret, clock=clock)
        limiter = SlidingWindowRateLimiter(config.rate_limit_max, config.rate_limit_window, clock=monotonic)
        return cls(
            config=config,
            catalog=catalog,
            purchases=purchases,
            signer=signer,
            access=access,
            sessions=SessionManager(config, clock=clock),
            tokens=tokens,
            limiter=limiter,
            pipeline=SecurityPipeline(config, tokens, limiter, access),
        )

    def new_engine(self) -> AntiPiracyEngine:
        return AntiPiracyEngine.from_config(self.config)

    def prune_rate_limits(self) -> int:
        """Drop rate-limit buckets for clients idle longer than the window."""
        removed = self.limiter.prune()
        if removed:
            LOGGER.debug("Pruned %d idle rate-limit buckets", removed)
        return removed

    @property
    def running(self) -> bool:
        return self.sessions.running and self._prune.running

    def start(self) -> None:
        self.sessions.start()
        self._prune.start()

    def stop(self) -> None:
        self._prune.stop()
        self.sessions.stop()


def _error_response(error: DRMError) -> JSONResponse:
    headers = protected_headers()
    if isinstance(error, RateLimitExceeded):
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(error.to_dict(), status_code=error.status, headers=headers)


def create_app(services: Optional[DRMServices] = None, **build_options) -> FastAPI:
    """Create the API app.

    Args:
        services: Pre-built services; built from ``build_options`` otherwise
            (``config``, ``catalog``, ``purchases``, ``signer``, ``clock``, ``monotonic``).
    """
    from .routes import router

    services = services or DRMServices.build(**build_options)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.start()
        try:
            yield
        finally:
            services.stop()

    app = FastAPI(title="videodrm", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(DRMError)
    async def drm_error_handler(request: Request, exc: DRMError):
        if exc.status >= 500:
            LOGGER.error("Unhandled DRM error on %s: %s", request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return JSONResponse(
            {"success": False, "error": "invalid_request", "message": "Missing or malformed parameters",
             "fields": fields},
            status_code=400,
            headers=protected_headers(),
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy", "sessions": services.sessions.stats()["activeSessions"]}

    app.include_router(router, prefix="/api/drm")
    return app
