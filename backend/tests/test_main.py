from fastapi.testclient import TestClient

from hzsite.main import app


def test_health_check():
    # No context manager: lifespan (table creation, admin seed) is not run.
    client = TestClient(app)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_routers_are_mounted_under_api():
    paths = {route.path for route in app.routes}

    assert "/api/auth/login" in paths
    assert "/api/auth/me" in paths
    assert "/api/admin/grants" in paths
    assert "/api/admin/sessions/purge" in paths
