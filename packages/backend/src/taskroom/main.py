"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The factory also builds the two long-lived collaborators every
request needs, in a fixed order:

1. the identity verifier (app.state.identity)
2. the Room Manager (app.state.rooms), wired to the verifier and to the
   AccessGuard through realtime.bindings

Lifespan starts the Room Manager before the server accepts connections
and tears it down (closing every socket) on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskroom import __version__
from taskroom.api import api_router
from taskroom.auth.identity import IdentityVerifier, build_identity_verifier
from taskroom.config import settings
from taskroom.errors import ErrorCode, TaskroomError, UpstreamUnavailableError
from taskroom.realtime.bindings import make_authenticator, make_room_authorizer
from taskroom.realtime.rooms import RoomManager

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Redis is optional; without it rate limiting is skipped.
    """
    logger.info(
        "taskroom.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        identity_mode=settings.identity_mode,
    )

    from taskroom.db.redis import close_redis, init_redis
    try:
        await init_redis()
        logger.info("taskroom.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("taskroom.redis_unavailable", error=str(e))

    await app.state.rooms.start()

    yield

    logger.info("taskroom.shutdown")
    await app.state.rooms.close()
    await app.state.identity.aclose()
    await close_redis()

    from taskroom.db.engine import engine
    await engine.dispose()


# ─── Error responses ─────────────────────────────────────


async def taskroom_error_handler(request: Request, exc: TaskroomError) -> JSONResponse:
    headers = None
    if exc.code == ErrorCode.AUTH_REQUIRED:
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.code == ErrorCode.UPSTREAM_UNAVAILABLE:
        headers = {"Retry-After": "5"}
        logger.warning("taskroom.upstream_unavailable", detail=exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def store_unavailable_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """A database that can't be reached is retryable, not a server bug."""
    logger.error(
        "taskroom.store_unavailable",
        path=request.url.path,
        error_type=type(getattr(exc, "orig", None) or exc).__name__,
    )
    return await taskroom_error_handler(
        request, UpstreamUnavailableError("Data store unavailable")
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed input is VALIDATION, in the same envelope as every other error."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        {
            "detail": f"{location}: {message}" if location else message,
            "code": ErrorCode.VALIDATION.value,
            "errors": [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                for e in errors
            ],
        },
        status_code=422,
    )


# ─── Factory ─────────────────────────────────────────────


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    identity: Optional[IdentityVerifier] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    if session_factory is None:
        from taskroom.db.engine import async_session_factory

        session_factory = async_session_factory
    if identity is None:
        identity = build_identity_verifier(settings)

    app = FastAPI(
        title="Taskroom",
        description="Collaborative projects, tasks, and comments with live room updates",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.identity = identity
    app.state.rooms = RoomManager(
        authenticator=make_authenticator(identity, session_factory),
        authorizer=make_room_authorizer(session_factory),
        queue_size=settings.ws_queue_size,
        overflow_policy=settings.ws_overflow_policy,
    )

    app.add_exception_handler(TaskroomError, taskroom_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(OperationalError, store_unavailable_handler)
    app.add_exception_handler(InterfaceError, store_unavailable_handler)
    app.add_exception_handler(PoolTimeoutError, store_unavailable_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from taskroom.middleware.rate_limit import RateLimitMiddleware
    from taskroom.middleware.request_id import RequestIdMiddleware
    from taskroom.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from taskroom.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: taskroom.main:app)
app = create_app()
