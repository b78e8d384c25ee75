import asyncio

import pytest
from sqlalchemy import text

from wakili.api import routes_health


async def _set_alembic_version(async_session_maker, version: str | None) -> None:
    async with async_session_maker() as session:
        await session.execute(
            text("CREATE TABLE IF NOT EXISTS alembic_version (version_num VARCHAR(32) NOT NULL)")
        )
        await session.execute(text("DELETE FROM alembic_version"))
        if version is not None:
            await session.execute(
                text("INSERT INTO alembic_version (version_num) VALUES (:version)"),
                {"version": version},
            )
        await session.commit()


@pytest.fixture(autouse=True)
def reset_heads_cache():
    routes_health._heads_cache.update({"loaded_at": 0.0, "heads": None})
    yield
    routes_health._heads_cache.update({"loaded_at": 0.0, "heads": None})


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_shipped_migrations_have_single_head():
    assert routes_health._expected_heads() == ["0001_consultation_core"]


def test_readyz_current(monkeypatch, client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, "0001_consultation_core"))
    monkeypatch.setattr(routes_health, "_expected_heads", lambda: ["0001_consultation_core"])

    response = client.get("/readyz")

    assert response.status_code == 200
    payload = response.json()["database"]
    assert payload["migrations_current"] is True
    assert payload["current_version"] == "0001_consultation_core"


def test_readyz_behind(monkeypatch, client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, None))
    monkeypatch.setattr(routes_health, "_expected_heads", lambda: ["0001_consultation_core"])

    response = client.get("/readyz")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
    assert response.json()["database"]["migrations_current"] is False


def test_readyz_without_packaged_migrations(monkeypatch, client, async_session_maker):
    asyncio.run(_set_alembic_version(async_session_maker, None))
    monkeypatch.setattr(routes_health, "_expected_heads", lambda: None)

    response = client.get("/readyz")

    assert response.status_code == 200
