import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_matchmaking.db")

import pytest
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.database import Base, engine, SessionLocal
from app.realtime import Coordinator, SqlRealtimeStore


@pytest.fixture
async def db_reset():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def coordinator(db_reset):
    coordinator = Coordinator(SqlRealtimeStore(SessionLocal))
    app.state.coordinator = coordinator
    return coordinator


@pytest.fixture
async def client(coordinator):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(client):
    async def _make_user(name="Alice", skill_level=3, email=None):
        response = await client.post("/auth/register", json={
            "name": name,
            "email": email or f"{name.lower()}@example.com",
            "password": "password123",
            "skill_level": skill_level,
        })
        assert response.status_code == 201, response.text
        body = response.json()
        return body["user"]["id"], {"Authorization": f"Bearer {body['access_token']}"}

    return _make_user
