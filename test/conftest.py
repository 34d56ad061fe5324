"""Shared fixtures for service-level tests."""

import pytest_asyncio

from db.postgres import close_db, configure_engine, get_session, init_db


@pytest_asyncio.fixture
async def db_session():
    """Fresh in-memory database and a session bound to it."""
    configure_engine("sqlite+aiosqlite://")
    await init_db()
    async with get_session() as session:
        yield session
    await close_db()
