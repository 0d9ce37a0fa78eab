import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.db.init import init_db
from app.routers import admin, auth, payments, plans, tokens

log = get_logger(__name__)

# (router module, prefix)
ROUTERS = (
    (auth, "/v1/auth"),
    (plans, "/v1/plans"),
    (payments, "/v1/payments"),
    (tokens, "/v1/tokens"),
    (admin, "/v1/admin"),
)


async def _timed_request(request: Request, call_next):
    """Tag every request with an id (client supplied or fresh) and log its outcome."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    bind_request_id(request_id)
    started = time.perf_counter()
    response = await call_next(request)
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


def _init_sentry(settings: Settings) -> None:
    import sentry_sdk
    sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
    log.info("sentry_enabled", env=settings.env)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(debug=settings.debug)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        if settings.sentry_dsn:
            _init_sentry(settings)
        # Tests register Beanie against an in-memory client themselves
        if not getattr(application.state, "skip_db_init", False):
            await init_db()
            log.info("db_connected", db=settings.mongodb_db_name)
        yield

    application = FastAPI(
        title="Token Pay API",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(_timed_request)

    application.add_exception_handler(AppError, app_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(Exception, generic_exception_handler)

    for module, prefix in ROUTERS:
        application.include_router(module.router, prefix=prefix, tags=[prefix.rsplit("/", 1)[-1]])

    @application.get("/health")
    async def health():
        """Liveness for load balancers; does not touch Mongo."""
        return {"status": "ok"}

    return application


app = create_app()
