import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("CONFLICT_WATCH_ENABLED", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.main import app  # noqa: E402


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def anyio_backend():
    return "asyncio"


def register_and_login(client, *, name: str, email: str, role: str) -> dict[str, str]:
    password = "password123"
    response = client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": password, "role": role},
    )
    assert response.status_code == 201, response.text
    login = client.post("/api/auth/login", json={"email": email, "password": password})
    assert login.status_code == 200, login.text
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


@pytest.fixture()
def reception_headers(client):
    return register_and_login(client, name="Sara Reception", email="sara@example.com", role="reception")


@pytest.fixture()
def second_reception_headers(client):
    return register_and_login(client, name="Omar Reception", email="omar@example.com", role="reception")


@pytest.fixture()
def manager_headers(client):
    return register_and_login(client, name="Layla Manager", email="layla@example.com", role="manager")


def booking_payload(**overrides) -> dict:
    payload = {
        "client_name": "Noor Studio",
        "client_phone": "07701234567",
        "category": "wedding",
        "shoot_date": "2026-11-02",
        "start_time": "10:00",
        "end_time": "12:00",
        "rental_type": "zone",
        "total_amount": 250000,
        "paid_amount": 50000,
        "currency": "IQD",
    }
    payload.update(overrides)
    return payload
