import pytest
from fastapi.testclient import TestClient

from certledger import api, config, db
from certledger.signing import generate_key_pair


@pytest.fixture
def keys():
    return {
        "admin": generate_key_pair(kid="admin"),
        "issuer": generate_key_pair(kid="issuer"),
        "outsider": generate_key_pair(kid="outsider"),
    }


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "certledger.db"
    db.configure(path)
    db.init_db()
    yield path
    db.close_connection()


# Fresh service per test: its own database, an admin, one issuer and CERT approved
@pytest.fixture
def client(tmp_path, monkeypatch, keys):
    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "service.db"))
    monkeypatch.setattr(config, "ADMIN_IDENTITY", keys["admin"].identity)
    monkeypatch.setattr(config, "ISSUERS", keys["issuer"].identity)
    monkeypatch.setattr(config, "INITIAL_CATEGORIES", "CERT")
    monkeypatch.setattr(config, "LOG_JSON", False)
    api._startup()
    api.relay_limiter.reset()
    api.verify_limiter.reset()
    yield TestClient(api.app)
    db.close_connection()
