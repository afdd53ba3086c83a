# devevent/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from fastapi import Request
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _sqlite_fallback_url() -> str:
    """File-based SQLite DB at the project root, for local development only."""

    root = Path(__file__).resolve().parents[1]
    return f"sqlite+aiosqlite:///{(root / 'devevent.db').as_posix()}"


def _translate_sslmode(value: str) -> Optional[str]:
    """Translate libpq sslmode values to asyncpg-compatible flags."""

    normalized = value.strip().lower()
    if normalized in {"require", "verify-ca", "verify-full"}:
        return "true"
    if normalized == "disable":
        return "false"

    # "prefer" and "allow" have no asyncpg equivalent; use driver defaults.
    return None


def normalize_database_url(raw_url: Optional[str], *, sslmode: Optional[str] = None) -> Optional[str]:
    """Ensure async-friendly drivers even if the URL omits them."""

    if not raw_url:
        return raw_url

    try:
        url = make_url(raw_url)
    except Exception:
        # Let the engine report the unparseable URL on first use.
        return raw_url

    driver = url.drivername.lower()
    if driver in {"postgresql", "postgres"} or (
        driver.startswith("postgresql+") and driver != "postgresql+asyncpg"
    ):
        url = url.set(drivername="postgresql+asyncpg")
    elif driver == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    if url.drivername == "postgresql+asyncpg":
        query = dict(url.query)
        explicit = query.pop("sslmode", None)
        if "ssl" not in query:
            mode = explicit if explicit is not None else sslmode
            translated = _translate_sslmode(mode) if mode else None
            if translated is not None:
                query["ssl"] = translated
        if query != dict(url.query):
            url = url.set(query=query)

    return url.render_as_string(hide_password=False)


def _pg_env_database_url(env: Mapping[str, str]) -> Optional[str]:
    """Construct a Postgres URL from PG* environment variables."""

    host = env.get("PGHOST")
    database = env.get("PGDATABASE")
    user = env.get("PGUSER")

    if not (host and database and user):
        return None

    query: dict[str, str] = {}
    sslmode = env.get("PGSSLMODE")
    if sslmode:
        translated = _translate_sslmode(sslmode)
        if translated is not None:
            query["ssl"] = translated

    try:
        port = int(env["PGPORT"]) if env.get("PGPORT") else None
    except ValueError:
        port = None

    return URL.create(
        drivername="postgresql+asyncpg",
        username=user,
        password=env.get("PGPASSWORD") or None,
        host=host,
        port=port,
        database=database,
        query=query,
    ).render_as_string(hide_password=False)


def database_url_from_env(env: Mapping[str, str]) -> Optional[str]:
    """Resolve the preferred database URL, or None when nothing is configured."""

    for name in ("DATABASE_URL", "POSTGRES_URL"):
        normalized = normalize_database_url(env.get(name), sslmode=env.get("PGSSLMODE"))
        if normalized:
            return normalized

    pg_url = _pg_env_database_url(env)
    if pg_url:
        return pg_url

    if _flag(env, "DB_ALLOW_SQLITE_FALLBACK"):
        return _sqlite_fallback_url()
    return None


@dataclass
class Settings:
    database_url: Optional[str] = None
    db_connect_timeout: float = 5.0
    db_socket_timeout: float = 45.0
    db_pool_size: int = 10
    db_echo: bool = False
    db_warm_on_startup: bool = False
    db_init_max_attempts: int = 10
    db_init_retry_seconds: float = 1.0

    image_storage: str = "cloudinary"
    image_folder: str = "devEvent"
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_endpoint: Optional[str] = None
    s3_region: Optional[str] = None
    s3_public_url: Optional[str] = None
    image_local_path: str = "storage/images"
    image_public_base_url: str = "http://localhost:8000/media"
    upload_timeout: float = 30.0
    max_image_bytes: int = 10 * 1024 * 1024

    allowed_origins: list[str] = field(default_factory=list)
    booking_rate_limit: int = 0
    booking_rate_window: float = 60.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            load_dotenv()
            env = os.environ

        origins = [o.strip() for o in env.get("ALLOWED_ORIGINS", "").split(",") if o.strip()]
        return cls(
            database_url=database_url_from_env(env),
            db_connect_timeout=_float(env, "DB_CONNECT_TIMEOUT", 5.0),
            db_socket_timeout=_float(env, "DB_SOCKET_TIMEOUT", 45.0),
            db_pool_size=_int(env, "DB_POOL_SIZE", 10),
            db_echo=_flag(env, "SQLALCHEMY_ECHO"),
            db_warm_on_startup=_flag(env, "DB_WARM_ON_STARTUP"),
            db_init_max_attempts=_int(env, "DB_INIT_MAX_ATTEMPTS", 10),
            db_init_retry_seconds=_float(env, "DB_INIT_RETRY_SECONDS", 1.0),
            image_storage=env.get("IMAGE_STORAGE", "cloudinary").strip().lower() or "cloudinary",
            image_folder=env.get("IMAGE_FOLDER", "devEvent"),
            cloudinary_cloud_name=env.get("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=env.get("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=env.get("CLOUDINARY_API_SECRET"),
            s3_bucket=env.get("IMAGE_S3_BUCKET"),
            s3_endpoint=env.get("IMAGE_S3_ENDPOINT"),
            s3_region=env.get("IMAGE_S3_REGION"),
            s3_public_url=env.get("IMAGE_S3_PUBLIC_URL"),
            image_local_path=env.get("IMAGE_LOCAL_PATH", "storage/images"),
            image_public_base_url=env.get("IMAGE_PUBLIC_BASE_URL", "http://localhost:8000/media"),
            upload_timeout=_float(env, "UPLOAD_TIMEOUT", 30.0),
            max_image_bytes=_int(env, "MAX_IMAGE_BYTES", 10 * 1024 * 1024),
            allowed_origins=origins,
            booking_rate_limit=_int(env, "BOOKING_RATE_LIMIT", 0),
            booking_rate_window=_float(env, "BOOKING_RATE_WINDOW", 60.0),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def get_settings(request: Request) -> Settings:
    """FastAPI dependency returning the settings the app was built with."""

    return request.app.state.settings
