from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
import os
from .config import settings
from .prefect_secrets import load_prefect_secret

# Used when no DATABASE_URL is configured anywhere (local development).
LOCAL_DATABASE_URL = "sqlite:///./local.db"


def resolve_database_url(url: str | None = None) -> str:
    """Return an async-driver database URL.

    Resolution order: explicit argument, `DATABASE_URL` env var, Prefect Secret
    block `database-url`, `settings.DATABASE_URL`, then a local SQLite file.
    """
    if not url:
        url = os.getenv("DATABASE_URL")
    if not url:
        secret_db = load_prefect_secret("database-url")
        if secret_db:
            os.environ["DATABASE_URL"] = secret_db
            url = secret_db
    if not url:
        url = settings.DATABASE_URL or LOCAL_DATABASE_URL

    # Ensure async drivers are used
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_for(url: str | None = None) -> AsyncEngine:
    """Create an async engine for the resolved URL.

    SQLite connections get `PRAGMA foreign_keys=ON` so snapshot and metric rows
    cannot reference missing parents.
    """
    engine = create_async_engine(resolve_database_url(url), echo=settings.DEBUG)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# Base class for our models
class Base(DeclarativeBase):
    pass
