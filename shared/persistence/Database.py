"""Async SQLAlchemy engine and session factory for the relational store."""

import os

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shared.helper.HelperConfig import HelperConfig


class Base(DeclarativeBase):
    pass


class Database:
    """Owns the async engine. ``DATABASE_URL`` defaults to a SQLite file under ./data."""

    def __init__(self, helper_config: HelperConfig, url: str | None = None) -> None:
        self.logging = helper_config.get_logger()
        self.url = url or helper_config.get_string_val("DATABASE_URL", default="sqlite+aiosqlite:///./data/compass.db")
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=helper_config.get_bool_val("DATABASE_ECHO", default=False),
        )
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def init_models(self) -> None:
        """Create all tables. Call once at startup."""
        # import models so Base.metadata knows about them
        from shared.persistence import models  # noqa: F401

        url = make_url(self.url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Database ready at %s.", url.render_as_string(hide_password=True))

    async def close(self) -> None:
        await self.engine.dispose()
