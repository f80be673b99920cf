from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from algoqube.api.app import create_app
from algoqube.core.database import Base, get_db
from algoqube.services.origin_resolver import ChatboxDomainStore, OriginResolver

STRONG_PASSWORD = "StrongPass123!"


@pytest.fixture
def session_factory(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def origin_resolver(session_factory):
    return OriginResolver(ChatboxDomainStore(session_factory))


@pytest.fixture
def make_client(db_session, monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("AUTH_COOKIE_SECURE", "false")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.delenv("FRONTEND_URL", raising=False)

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    clients = []

    def _make(resolver):
        application = create_app(origin_resolver=resolver)
        application.dependency_overrides[get_db] = override_get_db
        test_client = TestClient(application)
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield _make

    for test_client in clients:
        test_client.__exit__(None, None, None)
        test_client.app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, origin_resolver):
    return make_client(origin_resolver)


def register_and_login(client, email: str, password: str = STRONG_PASSWORD, name: str = "Test User") -> dict[str, str]:
    """Create an account and return bearer headers for it.

    Cookies are cleared so several accounts can be driven from one client.
    """
    register_response = client.post(
        "/api/users/register",
        json={"email": email, "password": password, "name": name},
    )
    assert register_response.status_code == 201, register_response.text
    login_response = client.post(
        "/api/users/login",
        json={"email": email, "password": password},
    )
    assert login_response.status_code == 200, login_response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {login_response.json()['token']}"}


def create_chatbox(client, headers, **overrides) -> dict:
    payload = {
        "organizationName": "Acme",
        "category": "Support",
        "domainUrl": "shop.example.com",
        "status": "active",
        "displayName": "Acme Bot",
        "themeColor": "#123456",
    }
    payload.update(overrides)
    response = client.post("/api/chatboxes", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["chatbox"]
