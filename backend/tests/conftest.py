import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import database.db as db
from backend.security import issue_session_token
from backend.services.rotator import rotator


@pytest.fixture()
def isolated_db(tmp_path, monkeypatch):
    test_db = tmp_path / "qrattend_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    rotator.clear()
    yield test_db
    rotator.clear()


@pytest.fixture()
def client(isolated_db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def make_headers():
    def _make(subject: str, role: str) -> dict[str, str]:
        token, _claims = issue_session_token(subject, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def student_headers(make_headers):
    return make_headers("student-001", "student")


@pytest.fixture()
def teacher_headers(make_headers):
    return make_headers("teacher-001", "teacher")
