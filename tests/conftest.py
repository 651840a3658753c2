import os

# app.py reads its configuration at import time
os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("MONGO_URI", "mongodb://127.0.0.1:1")
os.environ.setdefault("MONGO_TIMEOUT_MS", "50")
os.environ.setdefault("DEFAULT_LIMITS", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("COMMUTE_TZ", "UTC")

from datetime import timezone

import mongomock
import pytest

from store import CommuteStore


@pytest.fixture
def store(monkeypatch):
    db = mongomock.MongoClient()["greencommute-test"]
    s = CommuteStore(db, tz=timezone.utc)
    monkeypatch.setattr(s, "ping", lambda: None)
    return s


@pytest.fixture
def client(store, monkeypatch):
    import app as app_module

    monkeypatch.setattr(app_module, "store", store)
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


@pytest.fixture
def make_user(store):
    def _make(user_id="u1", name="Ada", email="ada@uni.edu", **extra):
        return store.create_profile(user_id, {"name": name, "email": email, **extra})

    return _make
