"""Integration tests for the HTTP surface.

Tests:
- POST /api/jobs/generation - execution trigger (always 200 once the body validates)
- GET /api/jobs/generation/{job_id} - polling view
- GET /cron/generation-retry - recovery sweep behind the cron secret
- POST /api/generations - submission
- POST /api/generations/{job_id}/refine - refinement submission
- GET /health
"""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from afroverse.app import app
from afroverse.models.owner import Owner
from afroverse.services.generation.recovery import InProcessTrigger, RecoveryScanner
from conftest import LEASE

CRON_SECRET = "s3cret-cron-token"


@pytest_asyncio.fixture
async def test_client(session_factory, uow_factory, executor, provider, clock, monkeypatch):
    """Provide AsyncClient with services injected into app.state."""
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    trigger = InProcessTrigger(executor)
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.provider = provider
    app.state.executor = executor
    app.state.trigger = trigger
    app.state.scanner = RecoveryScanner(session_factory, trigger, lease=LEASE, clock=clock)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await trigger.drain()


@pytest.mark.asyncio
class TestExecuteEndpoint:
    """Test POST /api/jobs/generation."""

    async def test_execute_produces_version(self, test_client, make_job):
        job_id = await make_job()

        response = await test_client.post(
            "/api/jobs/generation",
            json={"jobId": str(job_id), "requestedVersionId": "v1", "kind": "initial"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["versionId"] == "v1"
        assert "skipped" not in data
        assert isinstance(data["durationMs"], int)

    async def test_repeat_trigger_is_skipped(self, test_client, make_job):
        job_id = await make_job()
        body = {"jobId": str(job_id), "requestedVersionId": "v1", "executionId": "exec-1"}

        await test_client.post("/api/jobs/generation", json=body)
        response = await test_client.post("/api/jobs/generation", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["skipped"] is True
        assert data["reason"] == "version_exists"

    async def test_failure_is_reported_in_body(self, test_client, make_job, provider):
        from afroverse.services.exceptions import ProviderBlockedError

        provider.errors = [ProviderBlockedError("Prompt flagged by safety filter")]
        job_id = await make_job()

        response = await test_client.post(
            "/api/jobs/generation", json={"jobId": str(job_id), "requestedVersionId": "v1"}
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["error"] == "Prompt flagged by safety filter"

    async def test_unknown_job_is_skipped(self, test_client):
        response = await test_client.post(
            "/api/jobs/generation", json={"jobId": str(uuid4()), "requestedVersionId": "v1"}
        )

        assert response.status_code == 200
        assert response.json()["reason"] == "job_gone"

    @pytest.mark.parametrize(
        "body",
        [
            {"requestedVersionId": "v1"},
            {"jobId": "not-a-uuid", "requestedVersionId": "v1"},
            {"jobId": "00000000-0000-0000-0000-000000000000", "requestedVersionId": "1"},
            {"jobId": "00000000-0000-0000-0000-000000000000", "requestedVersionId": "v0"},
            {
                "jobId": "00000000-0000-0000-0000-000000000000",
                "requestedVersionId": "v1",
                "kind": "upscale",
            },
        ],
    )
    async def test_invalid_body_is_rejected(self, test_client, body):
        response = await test_client.post("/api/jobs/generation", json=body)

        assert response.status_code == 422


@pytest.mark.asyncio
class TestJobStatusEndpoint:
    """Test GET /api/jobs/generation/{job_id}."""

    async def test_returns_job_with_versions(self, test_client, make_job):
        job_id = await make_job()
        await test_client.post(
            "/api/jobs/generation", json={"jobId": str(job_id), "requestedVersionId": "v1"}
        )

        response = await test_client.get(f"/api/jobs/generation/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["jobId"] == str(job_id)
        assert data["status"] == "succeeded"
        assert data["attempts"] == 1
        assert data["maxAttempts"] == 5
        assert [v["versionId"] for v in data["versions"]] == ["v1"]
        assert data["versions"][0]["artifactRefs"]["image"].startswith("local://generations/")
        assert data["error"] is None
        assert data["retryAfter"] is None

    async def test_unknown_job_returns_404(self, test_client):
        response = await test_client.get(f"/api/jobs/generation/{uuid4()}")

        assert response.status_code == 404


@pytest.mark.asyncio
class TestCronEndpoint:
    """Test GET /cron/generation-retry."""

    async def test_missing_secret_is_rejected(self, test_client):
        response = await test_client.get("/cron/generation-retry")

        assert response.status_code == 401

    async def test_wrong_secret_is_rejected(self, test_client):
        response = await test_client.get(
            "/cron/generation-retry", headers={"Authorization": "Bearer guess"}
        )

        assert response.status_code == 401

    async def test_sweep_triggers_due_jobs(self, test_client, make_job, session_factory):
        from conftest import load_job

        job_id = await make_job()

        response = await test_client.get(
            "/cron/generation-retry", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["found"] == 1
        assert data["triggered"] == 1
        assert data["failed"] == 0
        assert data["reaped"] == 0
        assert isinstance(data["durationMs"], int)

        await app.state.trigger.drain()
        assert (await load_job(session_factory, job_id)).status.value == "succeeded"


@pytest.mark.asyncio
class TestSubmissionEndpoint:
    """Test POST /api/generations."""

    async def test_submission_creates_and_triggers_job(self, test_client, owner, source_ref):
        response = await test_client.post(
            "/api/generations",
            json={
                "ownerId": str(owner.id),
                "inputRefs": [source_ref],
                "styleParameters": {"prompt": "Festival portrait", "quality": "high"},
            },
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert data["versionId"] == "v1"

        await app.state.trigger.drain()
        polled = await test_client.get(f"/api/jobs/generation/{data['jobId']}")
        assert polled.json()["status"] == "succeeded"

    async def test_banned_owner_is_forbidden(self, test_client, session_factory):
        banned = Owner(handle="spammer", banned=True)
        async with session_factory() as session:
            session.add(banned)
            await session.commit()

        response = await test_client.post(
            "/api/generations",
            json={"ownerId": str(banned.id), "styleParameters": {"prompt": "anything"}},
        )

        assert response.status_code == 403

    async def test_unknown_owner_is_not_found(self, test_client):
        response = await test_client.post(
            "/api/generations",
            json={"ownerId": str(uuid4()), "styleParameters": {"prompt": "anything"}},
        )

        assert response.status_code == 404

    async def test_empty_prompt_is_bad_request(self, test_client, owner):
        response = await test_client.post(
            "/api/generations",
            json={"ownerId": str(owner.id), "styleParameters": {"prompt": ""}},
        )

        assert response.status_code == 400


@pytest.mark.asyncio
class TestRefineEndpoint:
    """Test POST /api/generations/{job_id}/refine."""

    async def test_refine_creates_new_job_from_latest_version(
        self, test_client, owner, make_job
    ):
        base_id = await make_job()
        await test_client.post(
            "/api/jobs/generation", json={"jobId": str(base_id), "requestedVersionId": "v1"}
        )

        response = await test_client.post(
            f"/api/generations/{base_id}/refine",
            json={"ownerId": str(owner.id), "instruction": "Add a gele head wrap"},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["kind"] == "refine"
        assert data["baseJobId"] == str(base_id)
        assert data["jobId"] != str(base_id)
        assert data["versionId"] == "v1"

        await app.state.trigger.drain()
        polled = (await test_client.get(f"/api/jobs/generation/{data['jobId']}")).json()
        assert polled["status"] == "succeeded"
        assert polled["kind"] == "refine"
        assert polled["baseJobId"] == str(base_id)

        base = (await test_client.get(f"/api/jobs/generation/{base_id}")).json()
        assert base["kind"] == "initial"
        assert base["baseJobId"] is None
        assert [v["versionId"] for v in base["versions"]] == ["v1"]

    async def test_unknown_job_is_not_found(self, test_client, owner):
        response = await test_client.post(
            f"/api/generations/{uuid4()}/refine",
            json={"ownerId": str(owner.id), "instruction": "Brighter"},
        )

        assert response.status_code == 404

    async def test_job_without_versions_is_bad_request(self, test_client, owner, make_job):
        base_id = await make_job()

        response = await test_client.post(
            f"/api/generations/{base_id}/refine",
            json={"ownerId": str(owner.id), "instruction": "Brighter"},
        )

        assert response.status_code == 400


@pytest.mark.asyncio
async def test_health_check(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
