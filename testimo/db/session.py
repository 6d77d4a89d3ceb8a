"""Database session management."""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from testimo.config import get_settings


def _normalize_url(url: str) -> str:
    # Convert postgresql:// to postgresql+psycopg:// for psycopg v3 driver
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


@lru_cache
def get_engine() -> Engine:
    """Create the shared engine on first use."""
    settings = get_settings()
    settings.validate()
    database_url = _normalize_url(settings.DATABASE_URL)

    connect_args: dict = {}
    if database_url.startswith("postgresql"):
        connect_args["sslmode"] = "require"
    elif database_url.startswith("sqlite"):
        # The scheduler thread and request threads share the engine
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def get_session() -> Generator[Session, None, None]:
    """Get database session with automatic cleanup."""
    with Session(get_engine()) as session:
        yield session
