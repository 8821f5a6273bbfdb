import os

import pytest


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_library.db")
    return db_path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SCORE_COACH_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("SCORE_COACH_"):
            monkeypatch.delenv(key)
