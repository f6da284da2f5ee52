import pytest
from fastapi.testclient import TestClient

import database
from config import settings
from library import Library


@pytest.fixture
def lib(tmp_path, request):
    # Unique database file per test; the shared connection is switched over to it
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def db_file(lib):
    return database.DATABASE_FILE


@pytest.fixture
def client(lib, monkeypatch):
    # Tests start from an empty database unless they ask for the seed
    monkeypatch.setattr(settings, "seed_on_startup", False)

    import api as api_module
    monkeypatch.setattr(api_module, "library", lib)

    with TestClient(api_module.app) as test_client:
        yield test_client
