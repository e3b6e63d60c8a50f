"""
Integration tests for the API endpoints.
"""

from datetime import timedelta
from typing import Any

import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.constants import JobStatus
from jobqueue.db.repository import JobStore
from jobqueue.utils import utc_now


class TestJobAPI:
    """Integration tests for job API endpoints."""

    @pytest_asyncio.fixture
    async def created_job(
        self,
        client: AsyncClient,
        sample_job_payload: dict[str, Any],
    ) -> dict:
        """Create a job for testing."""
        response = await client.post(
            "/v1/jobs",
            json={"payload": sample_job_payload, "max_retries": 2},
        )
        return response.json()

    async def test_create_job_success(
        self,
        client: AsyncClient,
        sample_job_payload: dict[str, Any],
    ):
        """Test successful job creation."""
        response = await client.post(
            "/v1/jobs",
            json={"payload": sample_job_payload, "max_retries": 3},
        )

        assert response.status_code == 201
        data = response.json()
        assert isinstance(data["id"], int)
        assert data["status"] == JobStatus.PENDING.value
        assert data["payload"] == sample_job_payload
        assert data["retries"] == 0
        assert data["max_retries"] == 3

    async def test_create_scheduled_job(self, client: AsyncClient):
        """Test a job scheduled in the future is created waiting."""
        scheduled = utc_now() + timedelta(hours=1)

        response = await client.post(
            "/v1/jobs",
            json={"payload": {"job_type": "echo"}, "scheduled_time": scheduled.isoformat()},
        )

        assert response.status_code == 201
        assert response.json()["status"] == JobStatus.WAITING.value

    async def test_create_job_validation_error(self, client: AsyncClient):
        """Test job creation with an invalid body."""
        response = await client.post("/v1/jobs", json={"payload": "not-an-object"})

        assert response.status_code == 422

    async def test_create_job_negative_retries_rejected(self, client: AsyncClient):
        """Test max_retries must not be negative."""
        response = await client.post(
            "/v1/jobs",
            json={"payload": {}, "max_retries": -1},
        )

        assert response.status_code == 422

    async def test_get_job(self, client: AsyncClient, created_job: dict):
        """Test fetching a job by id."""
        response = await client.get(f"/v1/jobs/{created_job['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created_job["id"]

    async def test_get_job_not_found(self, client: AsyncClient):
        """Test fetching an unknown job."""
        response = await client.get("/v1/jobs/999999")

        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found"

    async def test_list_jobs(self, client: AsyncClient):
        """Test listing jobs with pagination."""
        for i in range(3):
            await client.post("/v1/jobs", json={"payload": {"n": i}})

        response = await client.get("/v1/jobs", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert len(data["jobs"]) == 2
        assert data["page"] == 1
        assert data["limit"] == 2
        assert data["total"] == 3
        assert data["has_next"] is True

    async def test_list_jobs_by_status(self, client: AsyncClient, created_job: dict):
        """Test filtering the list by status."""
        await client.post(f"/v1/jobs/{created_job['id']}/cancel")
        await client.post("/v1/jobs", json={"payload": {}})

        response = await client.get("/v1/jobs", params={"status": "cancelled"})

        data = response.json()
        assert data["total"] == 1
        assert data["jobs"][0]["id"] == created_job["id"]

    async def test_list_jobs_sort_ascending(self, client: AsyncClient):
        """Test sorting by scheduled_time ascending."""
        now = utc_now()
        later = await client.post(
            "/v1/jobs",
            json={"payload": {}, "scheduled_time": (now + timedelta(minutes=5)).isoformat()},
        )
        sooner = await client.post(
            "/v1/jobs",
            json={"payload": {}, "scheduled_time": (now + timedelta(minutes=1)).isoformat()},
        )

        response = await client.get(
            "/v1/jobs", params={"sort": "scheduled_time", "order": "asc"}
        )

        ids = [job["id"] for job in response.json()["jobs"]]
        assert ids == [sooner.json()["id"], later.json()["id"]]

    async def test_list_jobs_invalid_sort(self, client: AsyncClient):
        """Test sorting by an unknown column is rejected."""
        response = await client.get("/v1/jobs", params={"sort": "payload"})

        assert response.status_code == 422

    async def test_cancel_job(self, client: AsyncClient, created_job: dict):
        """Test cancelling a pending job."""
        response = await client.post(f"/v1/jobs/{created_job['id']}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == JobStatus.CANCELLED.value

    async def test_cancel_job_twice(self, client: AsyncClient, created_job: dict):
        """Test a cancelled job cannot be cancelled again."""
        await client.post(f"/v1/jobs/{created_job['id']}/cancel")

        response = await client.post(f"/v1/jobs/{created_job['id']}/cancel")

        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found or not cancellable"

    async def test_cancel_in_progress_job(
        self,
        client: AsyncClient,
        created_job: dict,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """Test a claimed job cannot be cancelled."""
        async with session_factory() as session:
            await JobStore(session).claim_next("test-worker")
            await session.commit()

        response = await client.post(f"/v1/jobs/{created_job['id']}/cancel")

        assert response.status_code == 404

    async def test_retry_failed_job(
        self,
        client: AsyncClient,
        created_job: dict,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """Test manually retrying a failed job."""
        async with session_factory() as session:
            store = JobStore(session)
            await store.claim_next("test-worker")
            await store.mark_failed(created_job["id"], error="boom")
            await session.commit()

        response = await client.post(f"/v1/jobs/{created_job['id']}/retry")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == JobStatus.PENDING.value
        assert data["retries"] == 0
        assert data["last_error"] is None

    async def test_retry_job_not_failed(self, client: AsyncClient, created_job: dict):
        """Test only failed jobs can be retried."""
        response = await client.post(f"/v1/jobs/{created_job['id']}/retry")

        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found or not failed"

    async def test_job_stats(self, client: AsyncClient, created_job: dict):
        """Test counts by status."""
        await client.post("/v1/jobs", json={"payload": {}})
        await client.post(f"/v1/jobs/{created_job['id']}/cancel")

        response = await client.get("/v1/jobs/stats/summary")

        assert response.status_code == 200
        data = response.json()
        assert data["stats"] == {"pending": 1, "cancelled": 1}
        assert data["queue_depth"] == 1


class TestHealthAPI:
    """Integration tests for health and metrics endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Test health check endpoint."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_readiness_check(self, client: AsyncClient):
        """Test readiness endpoint."""
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"ready": True}

    async def test_liveness_check(self, client: AsyncClient):
        """Test liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    async def test_metrics_endpoint(self, client: AsyncClient):
        """Test Prometheus metrics endpoint."""
        await client.post("/v1/jobs", json={"payload": {}})

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "jobs_submitted_total" in response.text
