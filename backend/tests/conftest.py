import os
import shutil
import tempfile
import uuid
from pathlib import Path

import pytest

# Must be set before `skillpact` is imported: the engine is built at import time.
_DB_DIR = Path(tempfile.mkdtemp(prefix="skillpact-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["ENV"] = "dev"

from fastapi.testclient import TestClient  # noqa: E402

from skillpact.main import app  # noqa: E402

_client = TestClient(app)


@pytest.fixture(scope="session", autouse=True)
def reset_db():
    """Use a throw-away SQLite database for the whole test session."""
    yield
    shutil.rmtree(_DB_DIR, ignore_errors=True)


def new_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@skillpact.dev"


@pytest.fixture
def make_user():
    """Factory registering a fresh account and returning its id, email and auth headers."""
    def _make(prefix: str = "user", password: str = "secret123"):
        email = new_email(prefix)
        r = _client.post("/auth/register", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        login = _client.post("/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        token = login.json()["access_token"]
        return {
            "id": r.json()["id"],
            "email": email,
            "password": password,
            "headers": {"Authorization": f"Bearer {token}"},
        }
    return _make
