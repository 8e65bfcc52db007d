from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from authgate import app as app_module
from authgate.service.apps import AppsService
from authgate.service.errors import DependencyError
from authgate.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def test_list_apps_empty(client):
    response = client.get("/apps")
    assert response.status_code == 200
    assert response.json() == []


def test_create_and_list_app(client):
    created = client.post("/apps", json={"name": "dashboard", "path": "/dashboard"})

    assert created.status_code == 201
    assert created.json() == {"id": 1, "name": "dashboard", "path": "/dashboard"}
    assert client.get("/apps").json() == [created.json()]


@pytest.mark.parametrize(
    "body",
    [{"name": "dashboard"}, {"path": "/dashboard"}, {"name": "", "path": "/x"}, {}],
)
def test_create_app_requires_name_and_path(client, body):
    response = client.post("/apps", json=body)
    assert response.status_code == 400
    assert response.json() == {"message": "App name and path are required"}


def test_duplicate_app_name(client):
    client.post("/apps", json={"name": "dashboard", "path": "/dashboard"})
    response = client.post("/apps", json={"name": "dashboard", "path": "/other"})
    assert response.status_code == 409
    assert response.json() == {"message": "App with this name already exists"}


def test_delete_app(client):
    app_id = client.post("/apps", json={"name": "dashboard", "path": "/d"}).json()["id"]

    response = client.delete(f"/apps/{app_id}")

    assert response.status_code == 200
    assert response.json() == {"message": "App deleted successfully"}
    assert client.get("/apps").json() == []


def test_delete_missing_app(client):
    response = client.delete("/apps/99")
    assert response.status_code == 404
    assert response.json() == {"message": "App not found"}


@pytest.mark.asyncio
async def test_store_failure_on_create_is_generic():
    store = AsyncMock()
    store.get_app_by_name.return_value = None
    store.create_app.side_effect = OSError("disk full")
    service = AppsService(store)

    with pytest.raises(DependencyError) as excinfo:
        await service.create_app("dashboard", "/d")
    assert excinfo.value.message == "Failed to create app. Please try again."


@pytest.mark.asyncio
async def test_store_failure_on_delete_is_generic():
    store = AsyncMock()
    store.get_app.side_effect = OSError("connection reset")
    service = AppsService(store)

    with pytest.raises(DependencyError) as excinfo:
        await service.delete_app(1)
    assert excinfo.value.message == "Failed to delete app. Please try again."


def test_unexpected_error_is_internal_server_error():
    runtime = get_runtime()
    runtime.apps.list_apps = AsyncMock(side_effect=RuntimeError("boom"))
    client = TestClient(app_module.app, raise_server_exceptions=False)

    response = client.get("/apps")

    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error"}


def test_delete_app_id_zero_is_not_found(client):
    response = client.delete("/apps/0")
    assert response.status_code == 404
    assert response.json() == {"message": "App not found"}
