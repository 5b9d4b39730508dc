"""HTTP surface over the import queue."""

import json

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies.queue import get_import_queue
from app.api.routers import health, jobs
from app.db.models.import_job import utcnow
from app.main import create_app


@pytest.fixture
def client(queue, monkeypatch):
    monkeypatch.setattr(jobs, "fetch_progress", lambda job_id: {})
    app = create_app()
    app.dependency_overrides[get_import_queue] = lambda: queue
    with TestClient(app) as client:
        yield client


def test_enqueue_returns_created_job(client, source):
    response = client.post("/api/jobs/", json={"source_id": source.id, "type": "delta", "created_by": "user-1"})

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "queued"
    assert body["type"] == "delta"
    assert body["progress"] is None
    assert body["message"] == "Processed 0/? items"


def test_enqueue_rejects_unknown_type(client, source):
    response = client.post("/api/jobs/", json={"source_id": source.id, "type": "partial", "created_by": "user-1"})
    assert response.status_code == 422


def test_get_job_merges_progress_snapshot(client, queue, source, monkeypatch):
    job = queue.enqueue_job(source.id, "full", "user-1")
    queue.update_progress(job.id, 5, 10)
    monkeypatch.setattr(jobs, "fetch_progress", lambda job_id: {"message": "Halfway there"})

    body = client.get(f"/api/jobs/{job.id}").json()

    assert body["id"] == job.id
    assert body["progress"] == 0.5
    assert body["message"] == "Halfway there"


@pytest.mark.parametrize("suffix", ["", "/logs", "/errors", "/stream"])
def test_unknown_job_is_404(client, suffix):
    response = client.get(f"/api/jobs/missing{suffix}")
    assert response.status_code == 404


def test_logs_and_errors(client, queue, source):
    job = queue.enqueue_job(source.id, "full", "user-1")
    queue.log(job.id, "warn", "Slow upstream", {"latency_ms": 900})
    queue.log_error(job.id, "transform", "Bad price", "invalid_price", "sku-9")

    logs = client.get(f"/api/jobs/{job.id}/logs").json()
    assert [entry["level"] for entry in logs] == ["info", "warn"]
    assert logs[1]["details"] == {"latency_ms": 900}

    [error] = client.get(f"/api/jobs/{job.id}/errors").json()
    assert error["stage"] == "transform"
    assert error["error_code"] == "invalid_price"
    assert error["external_id"] == "sku-9"
    assert error["resolved"] is False


def test_list_jobs_filters_by_status(client, queue, repository, source):
    done = queue.enqueue_job(source.id, "full", "user-1")
    pending = queue.enqueue_job(source.id, "delta", "user-1")
    repository.transition(done.id, expected_status="queued", status="success", finished_at=utcnow())

    all_ids = [job["id"] for job in client.get("/api/jobs/").json()]
    assert set(all_ids) == {done.id, pending.id}

    queued = client.get("/api/jobs/", params={"status": "queued"}).json()
    assert [job["id"] for job in queued] == [pending.id]

    assert client.get("/api/jobs/", params={"status": "paused"}).status_code == 422


def test_stream_closes_on_terminal_job(client, queue, repository, source):
    job = queue.enqueue_job(source.id, "full", "user-1")
    repository.transition(job.id, expected_status="queued", status="failed", finished_at=utcnow())

    response = client.get(f"/api/jobs/{job.id}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [chunk for chunk in response.text.split("\n\n") if chunk]
    first = json.loads(events[0].removeprefix("data: "))
    assert first["status"] == "failed"
    assert events[-1] == "event: close\ndata: {}"


def test_health_live(client):
    assert client.get("/health/live").json()["status"] == "ok"


def test_health_ready_is_gated_by_database(client, monkeypatch):
    unhealthy = {"status": "unhealthy", "message": "down"}
    monkeypatch.setattr(health, "check_redis", lambda: unhealthy)
    monkeypatch.setattr(health, "check_database", lambda: {"status": "healthy", "message": "ok"})
    assert client.get("/health/ready").status_code == 200

    monkeypatch.setattr(health, "check_database", lambda: unhealthy)
    assert client.get("/health/ready").status_code == 503
