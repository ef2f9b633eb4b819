import sqlite3
import sys

import pytest
from fastapi.testclient import TestClient

from cmms.schema_sql import SCHEMA_SQL


def _fresh_main(tmp_path, monkeypatch):
    """Re-import the app so db.DB_PATH points at an isolated tmp dir."""
    monkeypatch.setenv("DB_DIR", str(tmp_path))
    monkeypatch.setenv("DB_FILE", "test.sqlite")
    monkeypatch.setenv("MACHINE_NAME", "Prensa Hidráulica 01")
    monkeypatch.setenv("MACHINE_MODEL", "PH-200")
    for mod in list(sys.modules):
        if mod == "cmms" or mod.startswith("cmms."):
            del sys.modules[mod]
    import cmms.main
    return cmms.main


@pytest.fixture
def client(tmp_path, monkeypatch):
    main = _fresh_main(tmp_path, monkeypatch)
    with TestClient(main.app) as c:
        yield c


def login(client, username, password):
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def admin(client):
    return login(client, "admin", "admin123")


@pytest.fixture
def tech(client):
    return login(client, "technician", "technician123")


@pytest.fixture
def viewer(client):
    return login(client, "viewer", "viewer123")


@pytest.fixture
def cur():
    con = sqlite3.connect(":memory:")
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON")
    c = con.cursor()
    c.executescript(SCHEMA_SQL)
    yield c
    con.close()


def make_part(client, headers, **overrides):
    payload = {
        "part_number": "BRG-6204",
        "name": "Rodamiento 6204",
        "category": "Rodamientos",
        "unit_cost": 12.5,
        "reorder_point": 2,
        "reorder_quantity": 10,
    }
    payload.update(overrides)
    r = client.post("/parts", json=payload, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()
