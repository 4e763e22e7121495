"""Shared fixtures for feed_notifier tests."""

import pytest
import aiosqlite
from unittest.mock import patch, AsyncMock

from feed_notifier.storage.database import init_database


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def in_memory_db():
    """Create an in-memory database for testing."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await init_database(db)

    # Patch get_database to return our in-memory connection
    with patch("feed_notifier.storage.database.get_database", AsyncMock(return_value=db)):
        yield db

    await db.close()
