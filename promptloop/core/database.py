import ssl
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from promptloop.config import get_settings

settings = get_settings()

LOCAL_HOSTS = ("localhost", "127.0.0.1", "db")


def prepare_url(url: str) -> tuple[str, dict]:
    """
    Prepare a connection URL for asyncpg.

    Hosted Postgres URLs carry libpq params like sslmode and channel_binding
    that asyncpg doesn't accept. We strip them and handle SSL via connect_args.

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
    if hostname in LOCAL_HOSTS:
        return clean_url, {}

    ssl_context = ssl.create_default_context()
    return clean_url, {"ssl": ssl_context}


clean_url, connect_args = prepare_url(settings.database_url)

engine_kwargs: dict[str, Any] = {"echo": settings.debug, "connect_args": connect_args}
if not clean_url.startswith("sqlite"):
    engine_kwargs.update(
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=280,  # Recycle before typical 5min idle timeouts on hosted Postgres
    )

engine = create_async_engine(clean_url, **engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)
