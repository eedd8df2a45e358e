# backend/resumefind/db/session.py
from __future__ import annotations
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker


def create_async_session_factory(url: str) -> async_sessionmaker[AsyncSession]:
    """One engine per process; sessions are short-lived, one per store call."""
    async_engine: AsyncEngine = create_async_engine(url, pool_pre_ping=True)
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
