"""Tests for the HTTP surface using TestClient and a file-backed SQLite database."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from querygate.core.deps import get_cache, get_registry
from querygate.core.security import create_access_token
from querygate.database import get_db
from querygate.main import app
from querygate.models import Base
from querygate.models.enums import UserRole
from querygate.models.user import User
from querygate.services.blueprint import BlueprintRegistry, registry

USERS = {
    "admin": ("admin@example.com", UserRole.ADMIN, True),
    "analyst": ("analyst@example.com", UserRole.ANALYST, True),
    "other": ("other@example.com", UserRole.ANALYST, True),
    "inactive": ("gone@example.com", UserRole.ANALYST, False),
}


async def _prepare(engine: AsyncEngine) -> dict[str, uuid.UUID]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    ids = {}
    async with async_sessionmaker(engine)() as session:
        for name, (email, role, active) in USERS.items():
            ids[name] = uuid.uuid4()
            session.add(User(id=ids[name], email=email, full_name=name, role=role, is_active=active))
        await session.commit()
    return ids


@pytest.fixture
def api_engine(tmp_path: Path) -> Iterator[tuple[AsyncEngine, dict[str, uuid.UUID]]]:
    # NullPool: TestClient runs its own event loop, so connections must not be reused across loops.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    ids = asyncio.run(_prepare(engine))
    yield engine, ids
    asyncio.run(engine.dispose())


@pytest.fixture
def client(api_engine, cache, blueprints: BlueprintRegistry) -> Iterator[TestClient]:
    engine, _ = api_engine
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def _override_db() -> AsyncIterator[AsyncSession]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_registry] = lambda: blueprints
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(api_engine) -> dict[str, dict[str, str]]:
    _, ids = api_engine
    return {name: {"Authorization": f"Bearer {create_access_token(uid)}"} for name, uid in ids.items()}


class TestAuth:
    def test_missing_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/blueprints")
        assert resp.status_code == 401
        assert resp.json() == {
            "success": False,
            "error": {"code": "HTTP_401", "message": "Authentication required."},
        }

    def test_garbage_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/blueprints", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_inactive_user(self, client: TestClient, auth) -> None:
        resp = client.get("/api/v1/blueprints", headers=auth["inactive"])
        assert resp.status_code == 401

    def test_unknown_user(self, client: TestClient) -> None:
        headers = {"Authorization": f"Bearer {create_access_token(uuid.uuid4())}"}
        assert client.get("/api/v1/blueprints", headers=headers).status_code == 401


class TestBlueprints:
    def test_list(self, client: TestClient, auth) -> None:
        resp = client.get("/api/v1/blueprints", headers=auth["analyst"])
        assert resp.status_code == 200
        names = [b["name"] for b in resp.json()["data"]]
        assert names == sorted(names)
        assert "FONT_MANAGEMENT" in names

    def test_get_unknown(self, client: TestClient, auth) -> None:
        resp = client.get("/api/v1/blueprints/NOPE", headers=auth["analyst"])
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_effective_view_applies_caller_config(self, client: TestClient, auth) -> None:
        created = client.post(
            "/api/v1/query-configs",
            json={"key": "FONT_MANAGEMENT", "value": {"selectable_fields": ["id", "name"]}},
            headers=auth["analyst"],
        )
        assert created.status_code == 201

        plain = client.get("/api/v1/blueprints/FONT_MANAGEMENT", headers=auth["analyst"]).json()["data"]
        effective = client.get(
            "/api/v1/blueprints/FONT_MANAGEMENT?effective=true", headers=auth["analyst"]
        ).json()["data"]
        assert "price" in plain["selectable_fields"]
        assert effective["selectable_fields"] == ["id", "name"]


class TestValidateQuery:
    def test_valid_query(self, client: TestClient, auth) -> None:
        resp = client.post(
            "/api/v1/query/FONT_MANAGEMENT/validate",
            json={"filter": {"between": ["price", [0, 100]]}, "select": ["id", "price"]},
            headers=auth["analyst"],
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["blueprint"] == "FONT_MANAGEMENT"
        assert data["filter"] == {"field": "price", "op": "between", "value": [0, 100]}
        assert data["select"] == ["id", "price"]
        assert data["sort"] == [{"field": "created_at", "direction": "desc"}]

    def test_illegal_operator(self, client: TestClient, auth) -> None:
        resp = client.post(
            "/api/v1/query/FONT_MANAGEMENT/validate",
            json={"filter": {"op": "contains", "field": "price", "value": "abc"}},
            headers=auth["analyst"],
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "ILLEGAL_OPERATOR"
        assert error["details"]["field"] == "price"
        assert error["details"]["operator"] == "contains"

    def test_depth_violation(self, client: TestClient, auth) -> None:
        resp = client.post(
            "/api/v1/query/FONT_MANAGEMENT/validate",
            json={"filter": {"field": "creator.categories.name", "op": "equals", "value": "x"}},
            headers=auth["analyst"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNSUPPORTED_DEPTH"

    def test_empty_body_passes_through(self, client: TestClient, auth) -> None:
        resp = client.post("/api/v1/query/FONT_MANAGEMENT/validate", headers=auth["analyst"])
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": None}

    def test_unregistered_blueprint(self, client: TestClient, auth) -> None:
        resp = client.post(
            "/api/v1/query/ORDER_MANAGEMENT/validate",
            json={"select": ["id"]},
            headers=auth["analyst"],
        )
        assert resp.status_code == 404

    def test_requires_auth(self, client: TestClient) -> None:
        resp = client.post("/api/v1/query/FONT_MANAGEMENT/validate", json={"select": ["id"]})
        assert resp.status_code == 401


class TestQueryConfigs:
    def _create(self, client: TestClient, headers, key="FONT_MANAGEMENT", value=None, system=False):
        return client.post(
            "/api/v1/query-configs",
            json={"key": key, "value": value or {"selectable_fields": ["id"]}, "system": system},
            headers=headers,
        )

    def test_only_admin_creates_system_default(self, client: TestClient, auth) -> None:
        assert self._create(client, auth["analyst"], system=True).status_code == 403
        resp = self._create(client, auth["admin"], system=True)
        assert resp.status_code == 201
        assert resp.json()["data"]["user_id"] is None

    def test_duplicate_slot_conflicts(self, client: TestClient, auth) -> None:
        assert self._create(client, auth["admin"], system=True).status_code == 201
        resp = self._create(client, auth["admin"], system=True)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "DUPLICATE_CONFIG"

    def test_effective_value_precedence(self, client: TestClient, auth) -> None:
        self._create(client, auth["admin"], value={"selectable_fields": ["id", "name"]}, system=True)
        self._create(client, auth["analyst"], value={"selectable_fields": ["name"]})

        mine = client.get("/api/v1/query-configs/key/FONT_MANAGEMENT", headers=auth["analyst"])
        theirs = client.get("/api/v1/query-configs/key/FONT_MANAGEMENT", headers=auth["other"])
        assert mine.json()["data"]["value"] == {"selectable_fields": ["name"]}
        assert theirs.json()["data"]["value"] == {"selectable_fields": ["id", "name"]}

    def test_effective_value_missing(self, client: TestClient, auth) -> None:
        resp = client.get("/api/v1/query-configs/key/UNKNOWN", headers=auth["analyst"])
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "CONFIG_NOT_FOUND"

    def test_update_invalidates_resolved_value(self, client: TestClient, auth) -> None:
        created = self._create(client, auth["analyst"], value={"selectable_fields": ["id"]}).json()["data"]
        client.get("/api/v1/query-configs/key/FONT_MANAGEMENT", headers=auth["analyst"])

        resp = client.put(
            f"/api/v1/query-configs/{created['id']}",
            json={"value": {"selectable_fields": ["name"]}},
            headers=auth["analyst"],
        )
        assert resp.status_code == 200

        after = client.get("/api/v1/query-configs/key/FONT_MANAGEMENT", headers=auth["analyst"])
        assert after.json()["data"]["value"] == {"selectable_fields": ["name"]}

    def test_other_users_override_is_hidden(self, client: TestClient, auth) -> None:
        created = self._create(client, auth["analyst"]).json()["data"]
        url = f"/api/v1/query-configs/{created['id']}"
        assert client.get(url, headers=auth["other"]).status_code == 404
        assert client.put(url, json={"value": {}}, headers=auth["other"]).status_code == 404
        assert client.get(url, headers=auth["admin"]).status_code == 200

    def test_analyst_cannot_modify_system_default(self, client: TestClient, auth) -> None:
        created = self._create(client, auth["admin"], system=True).json()["data"]
        url = f"/api/v1/query-configs/{created['id']}"
        assert client.get(url, headers=auth["analyst"]).status_code == 200
        assert client.delete(url, headers=auth["analyst"]).status_code == 403
        assert client.delete(url, headers=auth["admin"]).status_code == 200
        assert client.get(url, headers=auth["admin"]).status_code == 404

    def test_list_scopes_to_caller(self, client: TestClient, auth) -> None:
        self._create(client, auth["admin"], system=True)
        self._create(client, auth["analyst"])
        self._create(client, auth["other"])

        mine = client.get("/api/v1/query-configs", headers=auth["analyst"]).json()
        everyone = client.get("/api/v1/query-configs", headers=auth["admin"]).json()
        assert mine["meta"]["total"] == 2
        assert everyone["meta"]["total"] == 3

    def test_narrowing_config_applies_to_validation(self, client: TestClient, auth) -> None:
        self._create(client, auth["analyst"], value={"operators": {"price": ["gte"]}})
        resp = client.post(
            "/api/v1/query/FONT_MANAGEMENT/validate",
            json={"filter": {"between": ["price", [0, 10]]}},
            headers=auth["analyst"],
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "ILLEGAL_OPERATOR"

    def test_personal_override_cannot_bypass_system_default(self, client: TestClient, auth) -> None:
        self._create(client, auth["admin"], value={"selectable_fields": ["id", "name"]}, system=True)
        body = {"select": ["id", "price"]}
        url = "/api/v1/query/FONT_MANAGEMENT/validate"

        before = client.post(url, json=body, headers=auth["analyst"])
        assert before.status_code == 400
        assert before.json()["error"]["code"] == "ILLEGAL_VALUE"

        assert self._create(client, auth["analyst"], value={}).status_code == 201
        after = client.post(url, json=body, headers=auth["analyst"])
        assert after.status_code == 400
        assert after.json()["error"]["code"] == "ILLEGAL_VALUE"

        effective = client.get(
            "/api/v1/blueprints/FONT_MANAGEMENT?effective=true", headers=auth["analyst"]
        ).json()["data"]
        assert effective["selectable_fields"] == ["id", "name"]

    def test_cache_eviction_is_admin_only(self, client: TestClient, auth, cache) -> None:
        cache.store["query-config:FONT_MANAGEMENT:system"] = "{}"
        assert client.delete("/api/v1/query-configs/cache/FONT_MANAGEMENT", headers=auth["analyst"]).status_code == 403
        resp = client.delete("/api/v1/query-configs/cache/FONT_MANAGEMENT", headers=auth["admin"])
        assert resp.status_code == 200
        assert resp.json()["data"]["evicted"] is True
        assert "query-config:FONT_MANAGEMENT:system" not in cache.store

    def test_invalid_payload(self, client: TestClient, auth) -> None:
        resp = client.post("/api/v1/query-configs", json={"key": "", "value": {}}, headers=auth["analyst"])
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


class TestAppWiring:
    def test_request_id_and_security_headers(self, client: TestClient) -> None:
        resp = client.get("/api/v1/blueprints", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_health(self, client: TestClient, api_engine, cache, monkeypatch: pytest.MonkeyPatch) -> None:
        engine, _ = api_engine
        monkeypatch.setattr("querygate.main.async_session_factory", async_sessionmaker(engine))
        monkeypatch.setattr("querygate.main.get_redis", lambda: cache)
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["redis"]["status"] == "ok"

    def test_health_reports_cache_outage_without_failing(
        self, client: TestClient, api_engine, cache, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        engine, _ = api_engine
        cache.fail = True
        monkeypatch.setattr("querygate.main.async_session_factory", async_sessionmaker(engine))
        monkeypatch.setattr("querygate.main.get_redis", lambda: cache)
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["redis"]["status"] == "error"

    def test_lifespan_registers_and_freezes_blueprints(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("querygate.services.blueprint.registry._blueprints", {})
        monkeypatch.setattr("querygate.services.blueprint.registry._frozen", False)
        with TestClient(app):
            assert "FONT_MANAGEMENT" in registry
            assert registry.frozen
