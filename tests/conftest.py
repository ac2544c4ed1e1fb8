import importlib

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def client(tmp_path, monkeypatch):
    # isolate the database per test
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'notes.db'}")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")

    # reload modules so that app.db / app.main pick up the new env vars
    import app.db
    import app.main
    importlib.reload(app.db)
    importlib.reload(app.main)

    # keep one event loop for the whole test: views and dialogs live across requests
    with TestClient(app.main.app) as c:
        yield c
