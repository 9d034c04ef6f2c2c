"""
Tests for the HTTP surface: service index and health endpoints.

The TestClient runs the app lifespan, which binds the real socket listener
on an ephemeral port.
"""

import pytest
from fastapi.testclient import TestClient

from apps.services.gateway.app import create_app
from libs.core.logging_config import reset_logging


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def app(gateway_config):
    return create_app(gateway_config)


def test_index_lists_endpoints(app):
    with TestClient(app) as client:
        resp = client.get("/")

    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "n8n Integration Server"
    assert body["version"] == "1.0.0"
    assert body["endpoints"]["health"] == "/health"


def test_health_reports_running_listener(app):
    with TestClient(app) as client:
        resp = client.get("/health")
        alias = client.get("/healthz")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["services"] == {"api": "running", "websocket": "running"}
    assert body["connections"] == 0
    assert body["uptime"] >= 0
    assert alias.json()["services"]["websocket"] == "running"


def test_health_reports_stopped_listener_after_shutdown(app):
    with TestClient(app) as client:
        pass

    # Lifespan shutdown stopped the listener; serve /health without it
    client = TestClient(app)
    body = client.get("/health").json()

    assert body["services"]["websocket"] == "stopped"
    assert app.state.gateway.lifecycle.state.value == "stopped"


def test_detailed_health_includes_gateway_status(app):
    with TestClient(app) as client:
        body = client.get("/health/detailed").json()

    assert body["status"] == "healthy"
    gateway = body["gateway"]
    assert gateway["state"] == "running"
    assert gateway["accepting"] is True
    assert gateway["bound_address"].startswith("127.0.0.1:")
    assert gateway["in_flight"] == 0
    assert set(gateway["handlers"]) == {"workflow_trigger", "capability_call"}
    assert gateway["handlers"]["workflow_trigger"]["upstream"] == "http://n8n.test"


def test_detailed_health_without_gateway_is_degraded(app):
    client = TestClient(app)
    body = client.get("/health/detailed").json()

    assert body == {"status": "degraded", "uptime": 0.0, "gateway": None}
