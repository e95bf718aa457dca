"""Pytest configuration and fixtures."""

import os
import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def sqlite_provider():
    """Create a provider over an in-memory SQLite database."""
    from simpleprovider import create_provider

    provider = await create_provider("sqlite::memory:")
    yield provider
    await provider.close()


@pytest_asyncio.fixture
async def postgres_provider():
    """Create a PostgreSQL provider.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    from simpleprovider import create_provider

    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")

    provider = await create_provider(url, schema="public")
    yield provider
    await provider.close()
