import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from devevent.config import Settings
from devevent.connection import ConnectionManager
from devevent.errors import EventServiceError, InternalError, ValidationError
from devevent.rate_limiter import build_booking_rate_limiter
from devevent.services import ImageStorage, build_image_storage
from devevent.services.storage import LocalImageStorage

# ----- Routers -----
from devevent.routes.bookings import router as bookings_router
from devevent.routes.events import router as events_router

logger = logging.getLogger("devevent")


def _error_response(exc: EventServiceError) -> JSONResponse:
    return JSONResponse(exc.envelope(), status_code=exc.status_code)


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EventServiceError)
    async def _service_error(_request: Request, exc: EventServiceError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(_request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return _error_response(ValidationError("Request is invalid.", error=detail or None))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            code = "NOT_FOUND"
        elif exc.status_code < 500:
            code = "INVALID_INPUT"
        else:
            code = "INTERNAL_SERVER_ERROR"
        return JSONResponse(
            {"message": str(exc.detail), "code": code},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled(_request: Request, exc: Exception):
        logger.exception("Unhandled error", exc_info=exc)
        return _error_response(InternalError("Unexpected server error."))


async def warm_connection(connections: ConnectionManager, *, max_attempts: int, base_delay: float) -> bool:
    """Try to open the database connection with exponential backoff."""

    attempt = 0
    while True:
        attempt += 1
        try:
            await connections.acquire()
        except EventServiceError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "Database not reachable after %s attempts (%s); requests will retry lazily",
                    attempt,
                    exc.error or exc.message,
                )
                return False
            wait_time = base_delay * min(2 ** (attempt - 1), 8)
            logger.warning(
                "Database not ready (attempt %s/%s): %s. Retrying in %.1f seconds...",
                attempt,
                max_attempts,
                exc.error or exc.message,
                wait_time,
            )
            await asyncio.sleep(wait_time)
        else:
            return True


def create_app(
    settings: Optional[Settings] = None,
    *,
    image_storage: Optional[ImageStorage] = None,
    connections: Optional[ConnectionManager] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="DevEvent API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.connections = connections or ConnectionManager(
        settings.database_url,
        connect_timeout=settings.db_connect_timeout,
        socket_timeout=settings.db_socket_timeout,
        pool_size=settings.db_pool_size,
        echo=settings.db_echo,
    )
    app.state.image_storage = image_storage or build_image_storage(settings)
    app.state.booking_limiter = build_booking_rate_limiter(
        settings.booking_rate_limit, settings.booking_rate_window
    )

    # ----- CORS (enabled only if ALLOWED_ORIGINS is set) -----
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
            max_age=86400,
        )

    _install_exception_handlers(app)

    app.include_router(events_router)
    app.include_router(bookings_router)

    storage = app.state.image_storage
    if isinstance(storage, LocalImageStorage):
        app.mount("/media", StaticFiles(directory=str(storage.base_path)), name="media")

    @app.on_event("startup")
    async def on_startup():
        logger.info(
            "DevEvent API starting (database configured: %s, image storage: %s)",
            bool(settings.database_url),
            app.state.image_storage.backend_name,
        )
        if settings.db_warm_on_startup:
            await warm_connection(
                app.state.connections,
                max_attempts=max(settings.db_init_max_attempts, 1),
                base_delay=settings.db_init_retry_seconds,
            )

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.connections.close()

    # ----- Health check endpoint -----
    @app.get("/health", tags=["meta"])
    async def health():
        return {"ok": True, "database": app.state.connections.is_connected}

    return app


def _configure_logging() -> Settings:
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return settings


app = create_app(_configure_logging())
