from sqlmodel import SQLModel
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings


def resolve_database_url(settings: Settings) -> URL:
    """Combine the two credentials: the key fills in the URL's password."""
    if not settings.database_url:
        raise ValueError("DATABASE_URL is not set.")
    url = make_url(settings.database_url)
    if url.password is None and settings.database_key:
        url = url.set(password=settings.database_key)
    return url


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(resolve_database_url(settings), echo=settings.sql_echo, future=True)


def session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)
