"""
api/main.py -- FastAPI application factory for the EduMate backend.

create_app() builds every piece of process-wide state exactly once -- Settings,
CorsPolicy, access rules, user store, password encoder, token verifier and the
Gatekeeper -- and hands them to the app via app.state. Nothing downstream reads
configuration from a module global.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost). Starlette makes the most recently
added middleware the outermost, so create_app() registers them in reverse:
  1. CORSMiddleware     -- answers pre-flight; adds or omits CORS headers on
                           every response, gatekeeper rejections included
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. log_requests       -- one log line per request with latency
  4. gatekeeper         -- permit / 401 / 403 before any route handler runs;
                           answers non-pre-flight OPTIONS itself

Session policy is stateless: no SessionMiddleware, no cookies, no CSRF tokens.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, RootResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.profile import router as profile_router
from auth.cors import ALLOWED_METHODS, CorsPolicy
from auth.credentials import PasswordEncoder
from auth.gatekeeper import Gatekeeper, GateRequest, Outcome
from auth.rules import DEFAULT_RULES
from auth.store import DEFAULT_DB_URL, UserStore
from auth.tokens import TokenVerifier
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("edumate.api")
gate_logger = logging.getLogger("edumate.gatekeeper")


def _error_response(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        headers=headers,
    )


def create_app(settings: Settings | None = None, user_store: UserStore | None = None) -> FastAPI:
    """Assemble the application.

    Args:
        settings:   Immutable configuration. Defaults to get_settings(), which
                    reads the environment once.
        user_store: Pre-built store (tests pass an in-memory one). When None,
                    a store is opened from AUTH_DB_URL and closed on shutdown.
    """
    settings = settings or get_settings()
    owns_store = user_store is None
    if user_store is None:
        user_store = UserStore(settings.auth_db_url or DEFAULT_DB_URL)

    cors_policy = CorsPolicy.from_settings(settings)
    gatekeeper = Gatekeeper(
        cors=cors_policy,
        rules=DEFAULT_RULES,
        verify_token=TokenVerifier(settings, user_store),
    )

    # -----------------------------------------------------------------------
    # Lifespan -- shutdown closes only what this factory opened
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "EduMate API starting up (origins=%s, has_users=%s)",
            ",".join(sorted(cors_policy.allowed_origins)),
            user_store.has_users(),
        )
        yield
        if owns_store:
            user_store.close()
        logger.info("EduMate API shutdown complete")

    app = FastAPI(
        title="EduMate API",
        description="EduMate backend: stateless bearer-token authentication behind an ordered access-rule gatekeeper.",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.password_encoder = PasswordEncoder(rounds=settings.bcrypt_rounds)
    app.state.cors_policy = cors_policy
    app.state.gatekeeper = gatekeeper
    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    # -----------------------------------------------------------------------
    # Gatekeeper middleware (innermost -- registered first)
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def gatekeeper_middleware(request: Request, call_next):
        """Run the gatekeeper and either reject or forward with the Principal attached.

        Rejections are built here rather than raised: HTTPException raised in
        middleware never reaches the app's exception handlers. Missing and
        invalid tokens produce byte-identical 401 bodies.
        """
        gate_request = GateRequest.of(request.method, request.url.path, request.headers)
        # decide() may hit the user store, which is synchronous.
        decision = await run_in_threadpool(request.app.state.gatekeeper.decide, gate_request)

        if decision.outcome is Outcome.REJECT_401:
            gate_logger.info("401 %s %s (stage=%s)", request.method, request.url.path, decision.stage)
            return _error_response(
                401,
                "unauthorized",
                "Authentication required.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if decision.outcome is Outcome.REJECT_403:
            gate_logger.info(
                "403 %s %s for %s (role=%s)",
                request.method,
                request.url.path,
                decision.principal.username,
                decision.principal.role,
            )
            return _error_response(403, "forbidden", "Insufficient permissions.")
        if decision.stage == "preflight":
            # Answered here so OPTIONS succeeds on every path, not only those with
            # a matching route. CORSMiddleware still adds headers on the way out.
            return Response(status_code=200, headers={"Allow": ", ".join(ALLOWED_METHODS)})

        if gate_request.origin and not decision.cors_allowed:
            gate_logger.debug("Origin %r not allowed; response will carry no CORS headers", gate_request.origin)
        request.state.principal = decision.principal
        return await call_next(request)

    # -----------------------------------------------------------------------
    # Request logging middleware
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    app.add_middleware(SlowAPIMiddleware)
    # Outermost, so 401/403 responses from the gatekeeper still get CORS headers.
    cors_policy.install(app)

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(profile_router, prefix="/api", tags=["Profile"])
    app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])

    # -----------------------------------------------------------------------
    # Public endpoints (root, error, favicon)
    # -----------------------------------------------------------------------

    @app.get("/", tags=["Public"])
    async def root() -> RootResponse:
        """Liveness and version. Public."""
        return RootResponse(service="edumate", version=VERSION)

    @app.get("/error", include_in_schema=False)
    async def error_page() -> ErrorResponse:
        """Generic error landing path. Public so error pages never demand login."""
        return ErrorResponse(error=ErrorDetail(code="error", message="An error occurred."))

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        return Response(status_code=204)

    # -----------------------------------------------------------------------
    # Exception handlers
    #
    # All handlers return the same ErrorResponse envelope so API clients can
    # parse errors uniformly.
    # -----------------------------------------------------------------------

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Return 429 with a structured error and Retry-After.

        Plain def: SlowAPIMiddleware calls this handler directly and does not
        await it.
        """
        retry_after = int(getattr(exc, "retry_after", 60))
        response = JSONResponse(
            status_code=429,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="rate_limited",
                    message="Too many requests.",
                    detail=str(exc),
                )
            ).model_dump(),
        )
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 422 with structured error when the request body or params fail validation."""
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="validation_error",
                    message="Request validation failed.",
                    detail=str(exc.errors()),
                )
            ).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Return a structured error for all HTTP exceptions.

        Registered on Starlette's base class so router 404/405 responses get
        the envelope too. Route handlers raise HTTPException with a dict
        detail; use it directly as the error field rather than stringifying it.
        """
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(
                    code=f"http_{exc.status_code}",
                    message=str(exc.detail),
                )
            ).model_dump(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The exception goes to the log only, never to the response body.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error_response(500, "internal_error", "An unexpected error occurred.")

    return app
