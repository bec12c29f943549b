"""
Provenance store: runs, jobs, raw fetches, parse artifacts and parcel reads.

Every write the pipeline makes outside the canonical upsert goes through
here. Run and job bookkeeping commits immediately. Raw fetches and parse
artifacts are only flushed; the pipeline commits each stage through
commit(), so they land in separate transactions ahead of the canonical
upsert.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.exceptions import InvalidStatusTransitionError, StorageError
from core.hashing import content_signature
from ingestion.loaders.dialect import dialect_insert
from models import (
    IngestionJob,
    IngestionRun,
    JobStatus,
    Parcel,
    ParcelAssessment,
    ParcelSale,
    ParseArtifact,
    RawFetch,
    RunStatus,
    Source,
    TriggerOrigin,
)
from schemas.source import SourceConfig

logger = logging.getLogger(__name__)


class ProvenanceStore:
    """
    Persistence for the provenance chain of an ingestion.

    Ensures:
    - Sources are created once per key
    - Job status only moves forward, every status lands in status_history
    - Runs are terminal once they leave RUNNING
    - RawFetch rows are never updated
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ========================================================================
    # Sources
    # ========================================================================

    async def find_or_create_source(self, config: SourceConfig) -> Source:
        """Source row for ``config.source_key``; inserted on first use."""
        stmt = dialect_insert(self.db, Source).values(
            source_key=config.source_key,
            name=config.name,
            state_fips=config.state_fips,
            county_fips=config.county_fips,
            source_type=config.source_type,
            platform_family=config.platform_family,
            base_url=config.base_url,
            capabilities=dict(config.capabilities),
            rate_limit=config.rate_limit.model_dump(),
            created_at=datetime.utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["source_key"])
        await self.db.execute(stmt)

        result = await self.db.execute(select(Source).where(Source.source_key == config.source_key))
        source = result.scalar_one()
        await self.db.commit()
        return source

    # ========================================================================
    # Runs
    # ========================================================================

    async def create_run(
        self,
        trigger: TriggerOrigin = TriggerOrigin.MANUAL,
        purpose: Optional[str] = None,
    ) -> IngestionRun:
        run = IngestionRun(
            triggered_by=trigger,
            purpose=purpose,
            status=RunStatus.RUNNING,
            stats={},
        )
        self.db.add(run)
        await self.db.commit()
        logger.info(f"Created ingestion run {run.id} (trigger={trigger.value}, purpose={purpose})")
        return run

    async def get_run(self, run_id: UUID, with_jobs: bool = True) -> Optional[IngestionRun]:
        stmt = select(IngestionRun).where(IngestionRun.id == run_id)
        if with_jobs:
            stmt = stmt.options(selectinload(IngestionRun.jobs))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def finish_run(
        self,
        run_id: UUID,
        status: RunStatus,
        stats: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> IngestionRun:
        """
        Move a run to a terminal status.

        Raises:
            InvalidStatusTransitionError: run is already terminal, or status
                is not terminal
            StorageError: no such run
        """
        run = await self.get_run(run_id, with_jobs=False)
        if run is None:
            raise StorageError(f"Ingestion run {run_id} not found", context={"run_id": str(run_id)})

        current = RunStatus(run.status)
        if current.is_terminal or not status.is_terminal:
            raise InvalidStatusTransitionError(
                f"Run {run_id} cannot move from {current.value} to {status.value}",
                context={"run_id": str(run_id), "from": current.value, "to": status.value},
            )

        now = datetime.utcnow()
        run.status = status
        run.stats = {**(run.stats or {}), **(stats or {})}
        run.error = error
        run.finished_at = now
        run.updated_at = now
        await self.db.commit()

        logger.info(f"Run {run_id} finished: {status.value}")
        return run

    # ========================================================================
    # Jobs
    # ========================================================================

    async def create_job(self, run_id: UUID, source_id: UUID, job_input: Dict[str, Any]) -> IngestionJob:
        job = IngestionJob(
            run_id=run_id,
            source_id=source_id,
            input=job_input,
            status=JobStatus.PENDING,
            status_history=[JobStatus.PENDING.value],
            attempts=0,
            fetch_ids=[],
        )
        self.db.add(job)
        await self.db.commit()
        return job

    async def get_job(self, job_id: UUID) -> Optional[IngestionJob]:
        result = await self.db.execute(select(IngestionJob).where(IngestionJob.id == job_id))
        return result.scalar_one_or_none()

    async def transition_job(
        self,
        job: IngestionJob,
        status: JobStatus,
        error: Optional[str] = None,
    ) -> IngestionJob:
        """
        Move ``job`` to ``status`` and commit.

        Raises:
            InvalidStatusTransitionError: backwards move or move out of a
                terminal status
        """
        current = JobStatus(job.status)
        if not current.can_transition_to(status):
            raise InvalidStatusTransitionError(
                f"Job {job.id} cannot move from {current.value} to {status.value}",
                context={"job_id": str(job.id), "from": current.value, "to": status.value},
            )

        job.status = status
        # new list so the JSON column is flagged dirty
        job.status_history = [*(job.status_history or []), status.value]
        if error is not None:
            job.last_error = error
        job.updated_at = datetime.utcnow()
        await self.db.commit()

        logger.debug(f"Job {job.id}: {current.value} -> {status.value}")
        return job

    async def record_attempt(self, job: IngestionJob) -> int:
        job.attempts = (job.attempts or 0) + 1
        await self.db.commit()
        return job.attempts

    async def set_target_key(self, job: IngestionJob, target_key: str) -> None:
        job.target_key = target_key
        await self.db.commit()

    def set_job_fetches(self, job: IngestionJob, fetches: Sequence[RawFetch]) -> None:
        job.fetch_ids = [str(fetch.id) for fetch in fetches]

    # ========================================================================
    # Raw fetches
    # ========================================================================

    async def find_recent_fetch(
        self,
        source_id: UUID,
        target_key: str,
        content_hash: str,
        window: timedelta,
    ) -> Optional[RawFetch]:
        """Newest RawFetch with this hash for (source, target) inside ``window``."""
        since = datetime.utcnow() - window
        result = await self.db.execute(
            select(RawFetch)
            .where(
                RawFetch.source_id == source_id,
                RawFetch.target_key == target_key,
                RawFetch.content_hash == content_hash,
                RawFetch.fetched_at >= since,
            )
            .order_by(RawFetch.fetched_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def save_raw_fetch(
        self,
        *,
        run_id: UUID,
        job_id: UUID,
        source_id: UUID,
        target_key: str,
        request_url: str,
        body: str,
        content_hash: str,
        kind,
        request_method: str = "GET",
        response_status: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        fetched_at: Optional[datetime] = None,
    ) -> RawFetch:
        fetch = RawFetch(
            run_id=run_id,
            job_id=job_id,
            source_id=source_id,
            target_key=target_key,
            request_url=request_url,
            request_method=request_method,
            response_status=response_status,
            response_body=body,
            kind=kind,
            fetch_metadata=metadata or {},
            content_hash=content_hash,
            fetched_at=fetched_at or datetime.utcnow(),
        )
        self.db.add(fetch)
        await self.db.flush()
        return fetch

    async def get_raw_fetches(self, fetch_ids: Sequence[str]) -> List[RawFetch]:
        """RawFetch rows in the order of ``fetch_ids``."""
        ids = [UUID(str(fetch_id)) for fetch_id in fetch_ids]
        if not ids:
            return []
        result = await self.db.execute(select(RawFetch).where(RawFetch.id.in_(ids)))
        by_id = {fetch.id: fetch for fetch in result.scalars().all()}
        return [by_id[fetch_id] for fetch_id in ids if fetch_id in by_id]

    # ========================================================================
    # Parse artifacts
    # ========================================================================

    async def find_artifact(
        self,
        fetch_id: UUID,
        parser_version: str,
        signature: Optional[str] = None,
    ) -> Optional[ParseArtifact]:
        stmt = select(ParseArtifact).where(
            ParseArtifact.fetch_id == fetch_id,
            ParseArtifact.parser_version == parser_version,
        )
        if signature is not None:
            stmt = stmt.where(ParseArtifact.content_signature == signature)
        result = await self.db.execute(stmt.order_by(ParseArtifact.created_at.desc()).limit(1))
        return result.scalar_one_or_none()

    async def save_parse_artifact(
        self,
        *,
        job_id: UUID,
        source_id: UUID,
        fetch_id: Optional[UUID],
        parser_version: str,
        extracted: Dict[str, Any],
        warnings: Sequence[str] = (),
        dom_signature: Optional[str] = None,
    ) -> ParseArtifact:
        artifact = ParseArtifact(
            job_id=job_id,
            source_id=source_id,
            fetch_id=fetch_id,
            parser_version=parser_version,
            content_signature=content_signature(extracted),
            dom_signature=dom_signature,
            extracted=extracted,
            warnings=list(warnings),
            created_at=datetime.utcnow(),
        )
        self.db.add(artifact)
        await self.db.flush()
        return artifact

    # ========================================================================
    # Parcels (read side)
    # ========================================================================

    async def find_parcel_by_key(
        self,
        state_fips: str,
        county_fips: str,
        parcel_id_norm: str,
    ) -> Optional[Parcel]:
        result = await self.db.execute(
            select(Parcel).where(
                Parcel.state_fips == state_fips,
                Parcel.county_fips == county_fips,
                Parcel.parcel_id_norm == parcel_id_norm,
            )
        )
        return result.scalar_one_or_none()

    async def get_parcel(self, parcel_id: UUID) -> Optional[Parcel]:
        result = await self.db.execute(select(Parcel).where(Parcel.id == parcel_id))
        return result.scalar_one_or_none()

    async def get_parcel_assessments(self, parcel_id: UUID) -> List[ParcelAssessment]:
        result = await self.db.execute(
            select(ParcelAssessment)
            .where(ParcelAssessment.parcel_id == parcel_id)
            .order_by(ParcelAssessment.tax_year.desc())
        )
        return list(result.scalars().all())

    async def get_parcel_sales(self, parcel_id: UUID) -> List[ParcelSale]:
        """Most recent first; undated sales last."""
        result = await self.db.execute(
            select(ParcelSale)
            .where(ParcelSale.parcel_id == parcel_id)
            .order_by(ParcelSale.sale_date.is_(None), ParcelSale.sale_date.desc(), ParcelSale.created_at)
        )
        return list(result.scalars().all())
