"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import settings

# Create a profile named "no_deadline" with deadline disabled.
settings.register_profile("no_deadline", deadline=None)
settings.load_profile("no_deadline")


@pytest.fixture
def anyio_backend() -> str:
    """The project is built on asyncio; run anyio-marked tests on asyncio only."""
    return "asyncio"
