import os
import time
from typing import Optional

os.environ.setdefault("MILLENNION_JWT_SECRET", "test-secret-0123456789abcdef")
os.environ.setdefault("MILLENNION_ADMIN_SECRET", "cron-secret-test")
os.environ.setdefault("OPENAI_API_KEY", "")

import jwt
import pytest
from fastapi.testclient import TestClient

import auth
import storage


class FakeLLM:
    def __init__(self, reply: str = "Respuesta de prueba.") -> None:
        self.model = "fake-model"
        self.reply = reply
        self.error: Optional[Exception] = None
        self.calls = []

    def generate(self, system_prompt, prompt, history=()):
        self.calls.append({"system": system_prompt, "prompt": prompt, "history": list(history)})
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "millennion-test.sqlite3"
    monkeypatch.setattr(storage, "DB_PATH", str(path))
    storage.db_init()
    return path


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def client(db_path, fake_llm):
    import app as app_module

    app_module.app.state.llm = fake_llm
    with TestClient(app_module.app) as c:
        yield c


@pytest.fixture
def make_token():
    def _make(sub: str, plan: Optional[str] = "free", name: Optional[str] = None, ttl: int = 3600) -> str:
        now = int(time.time())
        payload = {"sub": sub, "iat": now, "exp": now + ttl}
        if plan:
            payload["plan"] = plan
        if name:
            payload["name"] = name
        return jwt.encode(payload, auth.JWT_SECRET, algorithm=auth.JWT_ALG)

    return _make


@pytest.fixture
def bearer(make_token):
    def _headers(sub: str, plan: Optional[str] = "free", name: Optional[str] = None) -> dict:
        return {"Authorization": f"Bearer {make_token(sub, plan=plan, name=name)}"}

    return _headers


@pytest.fixture
def admin_headers():
    return {"X-Cron-Secret": os.environ["MILLENNION_ADMIN_SECRET"]}
