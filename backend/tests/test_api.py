import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_pipeline
from api.router import limiter
from conftest import make_candidate, make_job
from main import app
from services.pipeline.orchestrator import MatchingPipeline


@pytest.fixture
def client(settings):
    pipeline = MatchingPipeline(settings)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    limiter.enabled = False
    yield TestClient(app)
    app.dependency_overrides.clear()
    limiter.enabled = True


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["pipeline_health"] in ("healthy", "degraded", "unhealthy")


def test_active_models_empty(client):
    response = client.get("/models/active")
    assert response.status_code == 200
    assert response.json() == {"models": [], "count": 0}


def test_predict_without_active_model(client):
    response = client.post(
        "/predict",
        json={
            "candidate": make_candidate(0).model_dump(mode="json"),
            "job": make_job(0).model_dump(mode="json"),
        },
    )
    assert response.status_code == 404


def test_predict_rejects_invalid_body(client):
    response = client.post("/predict", json={"candidate": {"id": "c1"}})
    assert response.status_code == 422


def test_deploy_unknown_model(client):
    response = client.post("/models/ghost/deploy")
    assert response.status_code == 404


def test_metrics_unknown_model(client):
    response = client.get("/models/ghost/metrics")
    assert response.status_code == 404


def test_monitor_run(client):
    response = client.post("/monitor/run")
    assert response.status_code == 200
    data = response.json()
    assert data["checks"] == []
    assert data["retrain"] == []
