"""API tests for the workflow routes, using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from src.api import deps
from src.api.main import app
from src.api.routes import workflows as workflow_routes
from src.blog_writer.client import BlogWriterAPIError, GeneratedImage, GenerationJob
from src.executor import queue_manager
from src.instructions.store import save_instruction_set
from src.workflows.registry import WorkflowModelRegistry

ORG = "org-1"


class FakeBlogWriter:
    """Stands in for BlogWriterClient at the route boundary."""

    def __init__(self):
        self.payloads = []
        self.job = GenerationJob(
            job_id="job-1", status="queued", message="Blog generation job created",
            estimated_completion_time=240,
        )
        self.error = None
        self.job_status = {"status": "running", "progress_percentage": 30}
        self.image = GeneratedImage(url="https://img.test/featured.png")

    async def create_generation_job(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.job

    async def get_job(self, job_id):
        return {"job_id": job_id, **self.job_status}

    async def generate_image(self, prompt, **options):
        return self.image


@pytest.fixture
def writer():
    return FakeBlogWriter()


@pytest.fixture
def client(writer):
    registry = WorkflowModelRegistry()
    app.dependency_overrides[deps.get_blog_writer] = lambda: writer
    app.dependency_overrides[deps.get_model_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    deps.add_user_to_org("user-1", ORG, role="admin")
    token = deps.create_session("user-1")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth():
    deps.add_user_to_org("user-2", "org-2")
    token = deps.create_session("user-2")
    return {"Authorization": f"Bearer {token}"}


def _queue(client, auth, **body):
    body.setdefault("topic", "Email marketing for small shops")
    return client.post("/v1/workflow/multi-phase", json=body, headers=auth)


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/v1/workflow/multi-phase").status_code == 401

    def test_unknown_token(self, client):
        response = client.get("/v1/workflow/multi-phase", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        deps.add_user_to_org("user-1", ORG)
        token = deps.create_session("user-1", ttl_hours=-1)
        response = client.get("/v1/workflow/multi-phase", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_user_without_org(self, client):
        token = deps.create_session("loner")
        response = client.get("/v1/workflow/multi-phase", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 400
        assert response.json()["detail"] == "No organization found"


class TestCreate:
    def test_queues_and_submits_job(self, client, auth, writer):
        save_instruction_set(ORG, "Write for shop owners.", system_prompt="You are a retail editor.")

        response = _queue(
            client, auth,
            keywords="email, newsletters",
            custom_instructions="Mention pricing.",
            platform="shopify",
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["job_id"] == "job-1"
        assert data["status"] == "queued"

        payload = writer.payloads[0]
        assert payload["topic"] == "Email marketing for small shops"
        assert payload["keywords"] == ["email", "newsletters"]
        assert payload["queue_id"] == data["queue_id"]
        assert payload["target_platform"] == "shopify"
        assert payload["custom_instructions"] == "Write for shop owners.\n\nMention pricing."
        assert payload["system_prompt"] == "You are a retail editor."
        assert "content_type" not in payload

        item = queue_manager.get_queue_item(data["queue_id"])
        assert item["status"] == "queued"
        assert item["org_id"] == ORG
        assert item["created_by"] == "user-1"
        assert item["metadata"]["backend_job_id"] == "job-1"
        assert item["metadata"]["estimated_completion_time"] == 240
        assert item["metadata"]["workflow_model_id"] == "standard"

    def test_topic_required(self, client, auth, writer):
        response = _queue(client, auth, topic="   ")
        assert response.status_code == 400
        assert response.json()["detail"] == "Topic is required"
        assert writer.payloads == []
        assert queue_manager.list_queue_items(ORG) == []

    def test_explicit_workflow_model(self, client, auth, writer):
        response = _queue(client, auth, workflow_model_id="premium")
        assert response.status_code == 200
        assert writer.payloads[0]["workflow_model"] == "premium"
        item = queue_manager.get_queue_item(response.json()["queue_id"])
        assert item["metadata"]["workflow_model_id"] == "premium"

    def test_unknown_workflow_model_creates_nothing(self, client, auth, writer):
        response = _queue(client, auth, workflow_model_id="does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]
        assert writer.payloads == []
        assert queue_manager.list_queue_items(ORG) == []

    def test_unmatched_quality_level_creates_nothing(self, client, auth, writer):
        response = _queue(client, auth, quality_level="ultra")
        assert response.status_code == 422
        assert writer.payloads == []
        assert queue_manager.list_queue_items(ORG) == []

    def test_external_error_fails_item(self, client, auth, writer):
        writer.error = BlogWriterAPIError(503, "upstream down")

        response = _queue(client, auth)

        assert response.status_code == 502
        data = response.json()
        assert data["status"] == "failed"
        assert data["error"] == "API error 503: upstream down"
        item = queue_manager.get_queue_item(data["queue_id"])
        assert item["status"] == "failed"
        assert item["generation_error"] == "API error 503: upstream down"

    def test_missing_job_id_fails_item(self, client, auth, writer):
        writer.job = GenerationJob(job_id=None)
        response = _queue(client, auth)
        assert response.status_code == 502
        item = queue_manager.get_queue_item(response.json()["queue_id"])
        assert item["status"] == "failed"

    def test_invalid_priority(self, client, auth):
        assert _queue(client, auth, priority=11).status_code == 422

    def test_images_only_requires_draft(self, client, auth):
        response = _queue(client, auth, phase="images_only")
        assert response.status_code == 400

    def test_images_only_skips_content_generation(self, client, auth, writer, monkeypatch):
        monkeypatch.delenv("CLOUDINARY_CLOUD_NAME", raising=False)
        response = _queue(
            client, auth, phase="images_only", post_id="post-42", content="Existing draft.",
        )

        assert response.status_code == 200
        assert response.json()["status"] == "queued"
        assert writer.payloads == []

        item = queue_manager.get_queue_item(response.json()["queue_id"])
        assert item["status"] == "completed"
        assert item["metadata"]["featured_image"]["url"] == "https://img.test/featured.png"
        assert item["metadata"]["post_id"] == "post-42"


class TestPollAndList:
    def test_get_single_item(self, client, auth):
        queue_id = _queue(client, auth).json()["queue_id"]

        response = client.get(f"/v1/workflow/multi-phase?queue_id={queue_id}", headers=auth)
        assert response.status_code == 200
        assert response.json()["item"]["queue_id"] == queue_id

        alias = client.get(f"/v1/workflow/multi-phase?id={queue_id}", headers=auth)
        assert alias.json()["item"]["queue_id"] == queue_id

    def test_items_carry_every_queue_field(self, client, auth):
        queue_id = _queue(client, auth).json()["queue_id"]

        item = client.get(f"/v1/workflow/multi-phase?queue_id={queue_id}", headers=auth).json()["item"]
        assert item["priority"] == 5
        assert item["keywords"] == []
        assert item["generation_error"] is None
        assert item["generated_content"] is None

        listed = client.get("/v1/workflow/multi-phase", headers=auth).json()["items"][0]
        assert listed["queue_id"] == queue_id
        assert listed["status"] == "queued"
        assert listed["metadata"]["backend_job_id"] == "job-1"

    def test_other_org_cannot_see_item(self, client, auth, other_auth):
        queue_id = _queue(client, auth).json()["queue_id"]
        response = client.get(f"/v1/workflow/multi-phase?queue_id={queue_id}", headers=other_auth)
        assert response.status_code == 404

    def test_list_with_status_filter(self, client, auth, writer):
        _queue(client, auth, topic="first")
        writer.error = BlogWriterAPIError(500, "boom")
        _queue(client, auth, topic="second")

        listing = client.get("/v1/workflow/multi-phase", headers=auth).json()
        assert listing["count"] == 2
        assert [i["topic"] for i in listing["items"]] == ["second", "first"]

        failed = client.get("/v1/workflow/multi-phase?status=failed", headers=auth).json()
        assert [i["topic"] for i in failed["items"]] == ["second"]

    def test_limit_bounds(self, client, auth):
        assert client.get("/v1/workflow/multi-phase?limit=0", headers=auth).status_code == 422


class TestCancel:
    def test_cancel_queued_item(self, client, auth):
        queue_id = _queue(client, auth).json()["queue_id"]
        response = client.delete(f"/v1/workflow/multi-phase?queue_id={queue_id}", headers=auth)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_requires_id(self, client, auth):
        assert client.delete("/v1/workflow/multi-phase", headers=auth).status_code == 400

    def test_cancel_unknown(self, client, auth):
        assert client.delete("/v1/workflow/multi-phase?queue_id=missing", headers=auth).status_code == 404

    def test_cancel_completed_conflicts(self, client, auth):
        queue_id = _queue(client, auth).json()["queue_id"]
        queue_manager.record_completion(queue_id, "Finished article.")

        response = client.delete(f"/v1/workflow/multi-phase?queue_id={queue_id}", headers=auth)
        assert response.status_code == 409
        assert queue_manager.get_queue_item(queue_id)["status"] == "completed"


class TestCallbackAndRefresh:
    def test_callback_completes_item(self, client, auth, monkeypatch):
        monkeypatch.setattr(workflow_routes, "WORKFLOW_CALLBACK_SECRET", "s3cret")
        queue_id = _queue(client, auth).json()["queue_id"]
        body = {"queue_id": queue_id, "status": "completed", "content": "Done. Really done."}

        forbidden = client.post("/v1/workflow/multi-phase/callback", json=body,
                                headers={"X-Callback-Secret": "wrong"})
        assert forbidden.status_code == 403

        response = client.post("/v1/workflow/multi-phase/callback", json=body,
                               headers={"X-Callback-Secret": "s3cret"})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert queue_manager.get_queue_item(queue_id)["generated_content"] == "Done. Really done."

    def test_callback_unknown_item(self, client, monkeypatch):
        monkeypatch.setattr(workflow_routes, "WORKFLOW_CALLBACK_SECRET", "")
        response = client.post("/v1/workflow/multi-phase/callback", json={"queue_id": "missing"})
        assert response.status_code == 404

    def test_refresh_applies_job_status(self, client, auth, writer):
        queue_id = _queue(client, auth).json()["queue_id"]

        running = client.post(f"/v1/workflow/multi-phase/refresh?queue_id={queue_id}", headers=auth)
        assert running.json()["item"]["status"] == "generating"
        assert running.json()["item"]["progress_percentage"] == 30

        writer.job_status = {"status": "completed", "result": {"content": "Final article. Two lines."}}
        done = client.post(f"/v1/workflow/multi-phase/refresh?queue_id={queue_id}", headers=auth)
        item = done.json()["item"]
        assert item["status"] == "completed"
        assert item["generated_content"] == "Final article. Two lines."

    def test_refresh_keeps_error_for_uppercase_failure(self, client, auth, writer):
        queue_id = _queue(client, auth).json()["queue_id"]
        writer.job_status = {"status": "FAILED", "error_message": "quota exceeded"}

        response = client.post(f"/v1/workflow/multi-phase/refresh?queue_id={queue_id}", headers=auth)
        item = response.json()["item"]
        assert item["status"] == "failed"
        assert item["generation_error"] == "quota exceeded"

    def test_refresh_without_job(self, client, auth, writer):
        writer.job = GenerationJob(job_id=None)
        queue_id = _queue(client, auth).json()["queue_id"]
        response = client.post(f"/v1/workflow/multi-phase/refresh?queue_id={queue_id}", headers=auth)
        assert response.status_code == 409


class TestModels:
    def test_list_models(self, client):
        response = client.get("/v1/workflow/models")
        assert response.status_code == 200
        ids = [m["id"] for m in response.json()]
        assert ids[:3] == ["standard", "premium", "comparison"]

    def test_run_unknown_model(self, client, auth):
        response = client.post(
            "/v1/workflow/models/run",
            json={"inputs": {"topic": "Email"}, "model_id": "nope"},
            headers=auth,
        )
        assert response.status_code == 404

    def test_run_without_matching_model(self, client, auth):
        response = client.post(
            "/v1/workflow/models/run",
            json={"inputs": {"topic": "Email", "quality_level": "ultra"}},
            headers=auth,
        )
        assert response.status_code == 422


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
