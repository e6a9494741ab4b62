"""HTTP surface: status codes, camelCase payloads, admin key, error mapping."""
import pytest
from fastapi.testclient import TestClient

from stefna.db.session import get_db
from stefna.main import app
from stefna.services.generation.cascade import CascadeExecutor

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def client(session_factory, fake_storage, recording_queue):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.task_queue = recording_queue
    app.state.cascade = CascadeExecutor(fake_storage)
    app.state.config_cache.invalidate()
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.task_queue
    del app.state.cascade
    app.state.config_cache.invalidate()


def _payload(**kwargs):
    body = {
        "prompt": "studio portrait",
        "mediaKind": "presets",
        "runId": "run-1",
        "userId": "user-1",
        "sourceUrl": "https://example.com/in.jpg",
    }
    body.update(kwargs)
    return body


class TestGenerationsApi:
    def test_submit_new_then_replay(self, client, recording_queue):
        first = client.post("/generations", json=_payload())
        assert first.status_code == 202
        body = first.json()
        assert body["status"] == "pending"
        assert body["runId"] == "run-1"
        assert body["mediaKind"] == "presets"
        assert "outputUrl" not in body
        assert len(recording_queue.enqueued) == 1

        second = client.post("/generations", json=_payload())
        assert second.status_code == 200
        assert second.json()["jobId"] == body["jobId"]
        assert len(recording_queue.enqueued) == 1

    def test_user_id_from_gateway_header(self, client):
        payload = _payload()
        del payload["userId"]
        response = client.post("/generations", json=payload, headers={"X-User-Id": "gateway-user"})
        assert response.status_code == 202

        balance = client.get("/credits/balance", headers={"X-User-Id": "gateway-user"})
        assert balance.json() == {"userId": "gateway-user", "balance": 28}

    def test_explicit_user_id_must_match_gateway_header(self, client):
        response = client.post("/generations", json=_payload(userId="victim"), headers={"X-User-Id": "caller"})

        assert response.status_code == 403
        assert client.get("/credits/balance", params={"userId": "victim"}).json()["balance"] == 30

    def test_status_is_scoped_to_gateway_user(self, client):
        job_id = client.post("/generations", json=_payload(userId="victim", runId="victim-run")).json()["jobId"]

        mismatched = client.get("/generations/status", params={"id": job_id, "userId": "victim"}, headers={"X-User-Id": "caller"})
        header_only = client.get("/generations/status", params={"id": job_id}, headers={"X-User-Id": "caller"})
        owner = client.get("/generations/status", params={"id": job_id}, headers={"X-User-Id": "victim"})

        assert mismatched.status_code == 403
        assert header_only.json() == {"status": "not_found"}
        assert owner.json()["runId"] == "victim-run"

    def test_missing_user_id(self, client):
        payload = _payload()
        del payload["userId"]
        assert client.post("/generations", json=payload).status_code == 400

    def test_unknown_media_kind_is_400(self, client):
        response = client.post("/generations", json=_payload(mediaKind="watercolor"))
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_missing_prompt_is_422(self, client):
        payload = _payload()
        del payload["prompt"]
        assert client.post("/generations", json=payload).status_code == 422

    def test_insufficient_credits_is_402(self, client):
        client.put("/admin/config", json={"cost_overrides": {"presets": 100}}, headers=ADMIN_HEADERS)

        response = client.post("/generations", json=_payload())

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "insufficient_credits"
        assert body["detail"]["required"] == 100

    def test_status_lookup(self, client):
        job_id = client.post("/generations", json=_payload()).json()["jobId"]

        by_job = client.get("/generations/status", params={"id": job_id, "userId": "user-1"})
        by_run = client.get("/generations/status", params={"id": "run-1", "userId": "user-1", "mediaKind": "presets"})
        other_user = client.get("/generations/status", params={"id": job_id, "userId": "user-2"})

        assert by_job.json()["status"] == "pending"
        assert by_job.json()["jobId"] == job_id
        assert by_run.json()["jobId"] == job_id
        assert other_user.json() == {"status": "not_found"}

    def test_status_unknown_media_kind(self, client):
        response = client.get("/generations/status", params={"id": "x", "userId": "user-1", "mediaKind": "nope"})
        assert response.status_code == 400


class TestAdminApi:
    def test_requires_key(self, client):
        assert client.get("/admin/config").status_code == 401
        assert client.get("/admin/config", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_update_invalidates_cache(self, client):
        assert client.post("/generations", json=_payload(runId="before")).status_code == 202

        response = client.put("/admin/config", json={"generation_enabled": False}, headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["generation_enabled"] is False

        blocked = client.post("/generations", json=_payload(runId="after"))
        assert blocked.status_code == 503
        assert blocked.json()["error"] == "generation_disabled"

    def test_rejects_unknown_kind_in_costs(self, client):
        response = client.put("/admin/config", json={"cost_overrides": {"nope": 3}}, headers=ADMIN_HEADERS)
        assert response.status_code == 400


class TestHealthApi:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready_without_redis(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "jobs_submitted_total" in response.text
