"""Fixtures for repository tests: a fresh SQLite file per test."""

import pytest

from chatgpa.db.database import init_db
from chatgpa.db.notes_repository import insert_class

USER = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def db(tmp_path):
    """Initialized database in a temp directory."""
    path = tmp_path / "test.db"
    init_db(path)
    return path


@pytest.fixture
def klass(db):
    """A class owned by USER."""
    return insert_class(USER, "Biology 101")
