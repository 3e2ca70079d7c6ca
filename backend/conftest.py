"""
Shared fixtures: a throwaway SQLite file per test, the API in demo mode
(no Anthropic key), and helpers to register coaches and build teams.
"""

import os
import sqlite3
import tempfile
import uuid

import pytest

# main.py creates its schema on import; point it somewhere disposable first.
os.environ["DB_FILE"] = os.path.join(tempfile.mkdtemp(prefix="gameplan-test-"), "import.db")
os.environ["ANTHROPIC_API_KEY"] = ""

import main  # noqa: E402
from playpool import SessionContext  # noqa: E402


@pytest.fixture(autouse=True)
def no_llm_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "gameplan.db")
    monkeypatch.setattr(main, "DB_FILE", path)
    main.init_db()
    return path


@pytest.fixture
def conn(db_path):
    c = main.get_db()
    yield c
    c.close()


@pytest.fixture
def team_id(conn):
    tid = str(uuid.uuid4())
    conn.execute("INSERT INTO teams (id, name, join_code) VALUES (?, ?, ?)", (tid, "Test Eagles", "EAGLE1"))
    conn.commit()
    return tid


@pytest.fixture
def opponent_id(conn, team_id):
    oid = str(uuid.uuid4())
    conn.execute("INSERT INTO opponents (id, team_id, name) VALUES (?, ?, ?)", (oid, team_id, "Central Tigers"))
    conn.commit()
    return oid


@pytest.fixture
def ctx(team_id, opponent_id):
    return SessionContext(team_id=team_id, opponent_id=opponent_id)


@pytest.fixture
def client(db_path):
    from fastapi.testclient import TestClient
    with TestClient(main.app) as c:
        yield c


def register(client, email, team_name=None, join_code=None, password="playaction1"):
    body = {"email": email, "password": password, "first_name": "Pat", "last_name": "Coach"}
    if team_name:
        body["team_name"] = team_name
    if join_code:
        body["join_code"] = join_code
    resp = client.post("/auth/register", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]


@pytest.fixture
def coach(client):
    headers, user = register(client, "coach@eagles.test", team_name="Eagles")
    return {"headers": headers, "user": user}


class FailingConnection:
    """Wraps a sqlite3 connection and fails any statement containing `fail_on`."""

    def __init__(self, conn, fail_on):
        self._conn = conn
        self.fail_on = fail_on

    def _check(self, sql):
        if self.fail_on in sql:
            raise sqlite3.OperationalError("disk I/O error")

    def execute(self, sql, *args):
        self._check(sql)
        return self._conn.execute(sql, *args)

    def executemany(self, sql, *args):
        self._check(sql)
        return self._conn.executemany(sql, *args)

    def commit(self):
        self._conn.commit()
