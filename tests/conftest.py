"""
Pytest fixtures for saveflow tests.
"""

import pytest

from config import Config
from database import Database


@pytest.fixture
def temp_db_path(tmp_path):
    """Temporary database file path."""
    return tmp_path / "saveflow.db"


@pytest.fixture
def config(tmp_path, temp_db_path):
    """Config with immediate retries and no external services."""
    return Config(
        llm_api_key="test-key",
        db_path=temp_db_path,
        log_dir=tmp_path / "log",
        max_concurrent=5,
        max_retries=3,
        retry_base_delay=0.0,
        digest_timezone="UTC",
    )


@pytest.fixture
def db(temp_db_path):
    """Fresh database instance."""
    database = Database(temp_db_path)
    yield database
    database.close()
