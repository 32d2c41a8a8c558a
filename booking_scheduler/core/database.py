import ssl
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from booking_scheduler.config import get_settings
from booking_scheduler.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def _fix_asyncpg_url(url: str) -> tuple[str, dict]:
    """
    Fix a PostgreSQL connection URL for asyncpg compatibility.

    Hosted Postgres URLs carry params like sslmode and channel_binding that
    asyncpg doesn't accept. We strip them and handle SSL via connect_args.

    - For remote hosts: Use SSL with default context
    - For local dev (localhost/127.0.0.1/db) and SQLite: No SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)

    # Remove unsupported asyncpg params
    unsupported = ["sslmode", "channel_binding", "options"]
    for param in unsupported:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local:
        return clean_url, {}
    else:
        ssl_context = ssl.create_default_context()
        return clean_url, {"ssl": ssl_context}


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine, sizing the pool for the scheduler's workload."""
    clean_url, connect_args = _fix_asyncpg_url(url)
    kwargs: dict[str, Any] = {"echo": echo, "connect_args": connect_args}
    if not clean_url.startswith("sqlite"):
        # The engine worker and admin requests each hold at most one connection
        kwargs.update(
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=5,
            pool_recycle=280,
        )
    logger.bind(dialect=urlparse(clean_url).scheme).debug("database_engine_created")
    return create_async_engine(clean_url, **kwargs)


engine = create_engine_for_url(settings.database_url, echo=settings.debug)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

