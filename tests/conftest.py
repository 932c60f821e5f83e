import pytest

from database import Database
from registry import SourceRegistry


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "crawler.db")
    database.init_db()
    return database


@pytest.fixture
def registry(db):
    return SourceRegistry(db)


@pytest.fixture
def source(registry):
    return registry.create_source("Scholarship Board", "https://example.org/scholarships")
