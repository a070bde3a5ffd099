import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import DatabaseManager
from main import create_app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(db_path=str(tmp_path / "saltern_test.db"), pool_size=4)


@pytest.fixture
def store(settings):
    db_manager = DatabaseManager(settings)
    db_manager.open()
    yield db_manager
    db_manager.close()


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
