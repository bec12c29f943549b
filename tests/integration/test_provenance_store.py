"""
Integration tests for the provenance store
"""

from datetime import datetime, timedelta
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from core.exceptions import InvalidStatusTransitionError, StorageError
from ingestion.loaders.provenance_store import ProvenanceStore
from ingestion.sources.manatee_pao import MANATEE_PAO_CONFIG
from models import JobStatus, RunStatus, Source, TriggerOrigin
from models.base import FetchKind


@pytest.fixture
def store(db_session):
    return ProvenanceStore(db_session)


@pytest_asyncio.fixture
async def job(store):
    source = await store.find_or_create_source(MANATEE_PAO_CONFIG)
    run = await store.create_run(TriggerOrigin.MANUAL, purpose="test")
    return await store.create_job(run.id, source.id, {"source_key": source.source_key, "parcel_id": "5788100009"})


async def save_fetch(store, job, body="<html>parcel</html>", content_hash="a" * 64, fetched_at=None):
    return await store.save_raw_fetch(
        run_id=job.run_id,
        job_id=job.id,
        source_id=job.source_id,
        target_key="parid:5788100009",
        request_url="https://www.manateepao.gov/parcel/?parid=5788100009",
        body=body,
        content_hash=content_hash,
        kind=FetchKind.HTML,
        response_status=200,
        fetched_at=fetched_at,
    )


class TestSources:

    @pytest.mark.asyncio
    async def test_source_created_once(self, db_session, store):
        first = await store.find_or_create_source(MANATEE_PAO_CONFIG)
        second = await store.find_or_create_source(MANATEE_PAO_CONFIG)

        assert first.id == second.id
        assert first.county_fips == "081"
        assert first.rate_limit == {"rps": 0.2, "burst": 2}
        count = (await db_session.execute(select(func.count()).select_from(Source))).scalar_one()
        assert count == 1


class TestRuns:

    @pytest.mark.asyncio
    async def test_finish_run(self, store):
        run = await store.create_run(TriggerOrigin.WEBHOOK, purpose="refresh")
        assert run.status == RunStatus.RUNNING

        finished = await store.finish_run(run.id, RunStatus.FAILED, stats={"jobs": 1}, error="boom")

        assert finished.status == RunStatus.FAILED
        assert finished.error == "boom"
        assert finished.finished_at is not None

    @pytest.mark.asyncio
    async def test_run_finishes_only_once(self, store):
        run = await store.create_run()
        await store.finish_run(run.id, RunStatus.SUCCEEDED)

        with pytest.raises(InvalidStatusTransitionError):
            await store.finish_run(run.id, RunStatus.SUCCEEDED)

    @pytest.mark.asyncio
    async def test_run_cannot_finish_as_running(self, store):
        run = await store.create_run()

        with pytest.raises(InvalidStatusTransitionError):
            await store.finish_run(run.id, RunStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_unknown_run(self, store):
        with pytest.raises(StorageError):
            await store.finish_run(uuid.uuid4(), RunStatus.SUCCEEDED)

    @pytest.mark.asyncio
    async def test_run_lists_its_jobs(self, store, job):
        run = await store.get_run(job.run_id)
        assert [j.id for j in run.jobs] == [job.id]


class TestJobs:

    @pytest.mark.asyncio
    async def test_forward_transitions_recorded(self, store, job):
        await store.transition_job(job, JobStatus.FETCHING)
        await store.transition_job(job, JobStatus.PARSED)
        await store.transition_job(job, JobStatus.NORMALIZED)

        reloaded = await store.get_job(job.id)
        assert reloaded.status_history == ["pending", "fetching", "parsed", "normalized"]

    @pytest.mark.asyncio
    async def test_backward_transition_rejected(self, store, job):
        await store.transition_job(job, JobStatus.FETCHING)

        with pytest.raises(InvalidStatusTransitionError):
            await store.transition_job(job, JobStatus.PENDING)

    @pytest.mark.asyncio
    async def test_failed_job_is_final(self, store, job):
        await store.transition_job(job, JobStatus.FAILED, error="not found")

        assert job.last_error == "not found"
        with pytest.raises(InvalidStatusTransitionError):
            await store.transition_job(job, JobStatus.FETCHING)

    @pytest.mark.asyncio
    async def test_attempts_counted(self, store, job):
        assert await store.record_attempt(job) == 1
        assert await store.record_attempt(job) == 2


class TestRawFetches:

    @pytest.mark.asyncio
    async def test_recent_fetch_inside_window(self, store, job):
        fetch = await save_fetch(store, job)
        await store.commit()

        found = await store.find_recent_fetch(job.source_id, "parid:5788100009", "a" * 64, timedelta(hours=24))
        assert found.id == fetch.id

        assert await store.find_recent_fetch(job.source_id, "parid:5788100009", "b" * 64, timedelta(hours=24)) is None
        assert await store.find_recent_fetch(job.source_id, "parid:1", "a" * 64, timedelta(hours=24)) is None

    @pytest.mark.asyncio
    async def test_stale_fetch_outside_window(self, store, job):
        await save_fetch(store, job, fetched_at=datetime.utcnow() - timedelta(hours=48))
        await store.commit()

        assert await store.find_recent_fetch(job.source_id, "parid:5788100009", "a" * 64, timedelta(hours=24)) is None
        assert await store.find_recent_fetch(job.source_id, "parid:5788100009", "a" * 64, timedelta(hours=72))

    @pytest.mark.asyncio
    async def test_fetches_returned_in_requested_order(self, store, job):
        first = await save_fetch(store, job, body="one", content_hash="1" * 64)
        second = await save_fetch(store, job, body="two", content_hash="2" * 64)
        await store.commit()

        fetches = await store.get_raw_fetches([str(second.id), str(first.id), str(uuid.uuid4())])

        assert [f.response_body for f in fetches] == ["two", "one"]
        assert await store.get_raw_fetches([]) == []

    @pytest.mark.asyncio
    async def test_artifact_lookup_by_version_and_signature(self, store, job):
        fetch = await save_fetch(store, job)
        artifact = await store.save_parse_artifact(
            job_id=job.id,
            source_id=job.source_id,
            fetch_id=fetch.id,
            parser_version="manatee-pao-v1.0.0",
            extracted={"kind": "assessor", "parcel_id": "5788100009"},
        )
        await store.commit()

        assert (await store.find_artifact(fetch.id, "manatee-pao-v1.0.0")).id == artifact.id
        assert (await store.find_artifact(fetch.id, "manatee-pao-v1.0.0", artifact.content_signature)).id == artifact.id
        assert await store.find_artifact(fetch.id, "manatee-pao-v1.0.0", "0" * 64) is None
        assert await store.find_artifact(fetch.id, "manatee-pao-v2.0.0") is None
