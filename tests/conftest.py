"""
Shared fixtures for the rwtxt store tests.

bcrypt runs at its minimum cost so tests stay fast.
"""

import os
import tempfile

import pytest
import pytest_asyncio

from notes.rwtxt_store.config import StoreSettings
from notes.rwtxt_store.storage import TextStore

TEST_BCRYPT_ROUNDS = 4


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def settings(data_dir):
    """Settings pointing at a fresh database."""
    return StoreSettings(
        db_path=os.path.join(data_dir, "rwtxt.db"),
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
    )


@pytest_asyncio.fixture
async def store(settings):
    """Started store, stopped after the test."""
    text_store = TextStore(settings)
    await text_store.start()
    yield text_store
    await text_store.stop()
