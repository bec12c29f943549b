# ============================================================================
# File: ingestion/runner.py
# Description: Ingestion orchestrator for resolve -> fetch -> extract -> normalize -> persist
# ============================================================================
"""
Ingestion Pipeline - orchestrates one target through a source adapter.

This module provides:
- Stage-by-stage execution with a persisted Job state machine
- Retry with backoff for transient fetch failures
- Raw-fetch dedup by content hash inside a freshness window
- Parse-artifact reuse when nothing new was fetched
- Failure classification into SUCCESS / SKIPPED / FAILED results

Callers only ever see an IngestionResult; exceptions stay inside.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID
import asyncio
import logging
import time

from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import (
    AdapterError,
    ConfigMissingError,
    FailureKind,
    FatalFetchError,
    NormalizationError,
    ParcelIngestionError,
    StorageError,
    TargetNotFoundError,
    TransientFetchError,
    UnknownSourceError,
)
from core.hashing import content_signature
from ingestion.base import FetchOptions, NormalizeContext, RawPayload, SourceAdapter
from ingestion.loaders.parcel_loader import ParcelLoader
from ingestion.loaders.provenance_store import ProvenanceStore
from ingestion.registry import SourceRegistry
from ingestion.retry import RetryPolicy, call_with_retry
from models import IngestionJob, IngestionRun, JobStatus, ParseArtifact, RawFetch, RunStatus, TriggerOrigin
from models.base import FetchKind
from schemas.ingestion import IngestionResult, IngestionStatus, ProvenanceEnvelope, ResolveInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    fetch_timeout: float = 60.0
    nav_timeout: float = 45.0
    freshness_window: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, app_settings=None) -> "PipelineOptions":
        app_settings = app_settings or settings
        return cls(
            fetch_timeout=app_settings.FETCH_TIMEOUT_SECONDS,
            nav_timeout=app_settings.NAV_TIMEOUT_SECONDS,
            freshness_window=timedelta(hours=app_settings.FRESHNESS_WINDOW_HOURS),
        )


@dataclass
class ReparseResult:
    artifact: ParseArtifact
    reused: bool
    warnings: list = field(default_factory=list)


class _Timer:
    """Per-step wall-clock durations, in milliseconds."""

    def __init__(self):
        self.steps: Dict[str, float] = {}

    def step(self, name: str):
        timer = self

        class _Step:
            def __enter__(self):
                self.started = time.perf_counter()
                logger.debug(f"Step {name} started")
                return self

            def __exit__(self, *exc_info):
                elapsed = round((time.perf_counter() - self.started) * 1000, 2)
                timer.steps[name] = elapsed
                logger.info(f"Step {name} finished in {elapsed}ms")
                return False

        return _Step()


class IngestionPipeline:
    """
    Ingestion Orchestrator

    Responsibilities:
    - Drive resolve -> fetch -> extract -> normalize -> persist for one target
    - Keep the Job row in step with progress (pending -> fetching -> parsed
      -> normalized, or failed)
    - Commit raw fetches, then the parse artifact, then canonical rows
    - Finalize runs it created; runs supplied by the caller stay open
    """

    def __init__(
        self,
        db_session: AsyncSession,
        registry: SourceRegistry,
        options: Optional[PipelineOptions] = None,
        sleep=asyncio.sleep,
    ):
        self.db = db_session
        self.registry = registry
        self.options = options or PipelineOptions.from_settings()
        self.sleep = sleep
        self.store = ProvenanceStore(db_session)
        self.loader = ParcelLoader(db_session)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def start_run(
        self,
        trigger: TriggerOrigin = TriggerOrigin.MANUAL,
        purpose: Optional[str] = None,
    ) -> IngestionRun:
        """Open a run that several ingest calls can share."""
        return await self.store.create_run(trigger, purpose)

    async def finish_run(
        self,
        run_id: UUID,
        status: RunStatus,
        stats: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> IngestionRun:
        """
        Close a run opened with start_run.

        Raises:
            InvalidStatusTransitionError: the run is already finished
        """
        return await self.store.finish_run(run_id, status, stats=stats, error=error)

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def ingest(
        self,
        source_key: Optional[str],
        target: ResolveInput,
        force: bool = False,
        run_id: Optional[UUID] = None,
        trigger: TriggerOrigin = TriggerOrigin.MANUAL,
        purpose: Optional[str] = None,
    ) -> IngestionResult:
        """
        Ingest one target from one source.

        Args:
            source_key: Registered source; None selects the default source
            target: Address and/or parcel id to look up
            force: Store new raw fetches and re-extract even when identical
                content was fetched inside the freshness window
            run_id: Existing run to attach to; a new run is created otherwise
            trigger: What started the ingestion (recorded on new runs)
            purpose: Free-form purpose tag (recorded on new runs)

        Returns:
            IngestionResult with status SUCCESS, SKIPPED or FAILED
        """
        source_key = self.registry.resolve_source_key(source_key)

        # --------------------------------------------------
        # STEP 1: SOURCE LOOKUP
        # --------------------------------------------------
        try:
            config = self.registry.get_config(source_key)
            adapter = self.registry.get(source_key)
        except UnknownSourceError as e:
            logger.warning(f"Ingest rejected: {e.message}", extra={"error_context": e.to_dict()})
            return IngestionResult(status=IngestionStatus.FAILED, error=e.message)

        # --------------------------------------------------
        # STEP 2: RUN + JOB
        # --------------------------------------------------
        owns_run = run_id is None
        run_opened = False
        try:
            source = await self.store.find_or_create_source(config)
            source_id = source.id

            if owns_run:
                run = await self.store.create_run(trigger, purpose)
                run_id = run.id
                run_opened = True
            else:
                run = await self.store.get_run(run_id, with_jobs=False)
                if run is None or RunStatus(run.status).is_terminal:
                    message = f"Run {run_id} is not open"
                    logger.warning(f"Ingest rejected: {message}")
                    return IngestionResult(status=IngestionStatus.FAILED, run_id=run_id, error=message)

            job = await self.store.create_job(
                run_id,
                source_id,
                {
                    "source_key": source_key,
                    "address": target.address,
                    "parcel_id": target.parcel_id,
                    "county_fips": target.county_fips,
                    "force": force,
                },
            )
            job_id = job.id
        except (SQLAlchemyError, StorageError) as e:
            message = _describe(e)
            logger.error(f"Could not open an ingestion job for {source_key}: {message}")
            await self._safe_rollback()
            if run_opened:
                await self._safe_finish_run(run_id, RunStatus.FAILED, {"outcome": "failed"}, message)
            return IngestionResult(status=IngestionStatus.FAILED, run_id=run_id, error=message)

        attempt = _Attempt(
            source_key=source_key,
            source_id=source_id,
            run_id=run_id,
            job_id=job_id,
            owns_run=owns_run,
            adapter=adapter,
        )

        logger.info(
            f"Ingesting from {source_key} (run={run_id}, job={job_id}, force={force})",
            extra={"source_key": source_key, "run_id": str(run_id), "job_id": str(job_id)},
        )

        try:
            return await self._run_job(attempt, job, target, force)

        except Exception as e:
            logger.exception(f"Unexpected error while ingesting from {source_key}")
            await self._safe_rollback()
            return await self._fail(attempt, _describe(e))

    async def _run_job(
        self,
        attempt: "_Attempt",
        job: IngestionJob,
        target: ResolveInput,
        force: bool,
    ) -> IngestionResult:
        adapter = attempt.adapter
        timer = attempt.timer

        # --------------------------------------------------
        # STEP 3: RESOLVE
        # --------------------------------------------------
        if target.is_empty:
            return await self._skip(attempt, "No address or parcel id given", "INVALID_INPUT")

        try:
            with timer.step("resolve"):
                descriptor = await adapter.resolve(target)
        except (TargetNotFoundError, ConfigMissingError) as e:
            return await self._skip(attempt, e.message, e.kind.value)
        except AdapterError as e:
            return await self._fail(attempt, e.message, e)

        if descriptor is None:
            return await self._skip(attempt, f"Target not found on {attempt.source_key}", FailureKind.NOT_FOUND.value)

        await self.store.set_target_key(job, descriptor.target_key)

        # --------------------------------------------------
        # STEP 4: FETCH (with retry)
        # --------------------------------------------------
        await self.store.transition_job(job, JobStatus.FETCHING)
        options = FetchOptions(timeout=self.options.fetch_timeout, nav_timeout=self.options.nav_timeout)
        policy = RetryPolicy.from_config(adapter.config.retry)

        async def fetch_once():
            try:
                return await asyncio.wait_for(adapter.fetch(descriptor, options), timeout=options.timeout)
            except asyncio.TimeoutError as e:
                raise TransientFetchError(
                    f"Fetch timed out after {options.timeout}s",
                    context={"source_key": attempt.source_key, "target_key": descriptor.target_key},
                    original_exception=e,
                )

        async def count_attempt(number: int):
            await self.store.record_attempt(job)

        try:
            with timer.step("fetch"):
                fetched = await call_with_retry(
                    fetch_once,
                    policy,
                    on_attempt=count_attempt,
                    sleep=self.sleep,
                    description=f"{attempt.source_key} fetch",
                )
        except (TargetNotFoundError, ConfigMissingError) as e:
            return await self._skip(attempt, e.message, e.kind.value)
        except (TransientFetchError, FatalFetchError) as e:
            return await self._fail(attempt, e.message, e)

        if not fetched.payloads:
            return await self._fail(
                attempt,
                f"{attempt.source_key} returned no payloads",
                FatalFetchError(f"{attempt.source_key} returned no payloads"),
            )

        # --------------------------------------------------
        # STEP 5: PERSIST RAW FETCHES (dedup)
        # --------------------------------------------------
        with timer.step("persist_raw"):
            fetches, reused_all = await self._persist_raw(
                attempt, descriptor.target_key, fetched.payloads, force, fetched.fetched_at
            )
        primary = fetches[0]
        attempt.stats["raw_fetches_written"] = sum(1 for f in fetches if f.job_id == attempt.job_id)
        attempt.stats["raw_fetches_reused"] = len(fetches) - attempt.stats["raw_fetches_written"]

        # provenance points at the stored primary fetch, reused or new
        attempt.source_url = primary.request_url
        attempt.fetched_at = primary.fetched_at
        attempt.session_reused = fetched.session_reused

        # --------------------------------------------------
        # STEP 6: EXTRACT
        # --------------------------------------------------
        with timer.step("extract"):
            prior = None
            if reused_all:
                prior = await self.store.find_artifact(primary.id, adapter.parser_version)

            if prior is not None:
                record = adapter.record_from_payload(prior.extracted)
                attempt.stats["artifact_reused"] = True
                logger.info(f"Reusing parse artifact {prior.id} ({adapter.parser_version})")
            else:
                extracted = adapter.extract(fetched.payloads)
                record = extracted.record
                artifact = await self.store.save_parse_artifact(
                    job_id=attempt.job_id,
                    source_id=attempt.source_id,
                    fetch_id=primary.id,
                    parser_version=adapter.parser_version,
                    extracted=record.model_dump(mode="json"),
                    warnings=extracted.warnings,
                    dom_signature=extracted.dom_signature,
                )
                attempt.stats["artifact_reused"] = False
                attempt.stats["extract_warnings"] = len(extracted.warnings)
                logger.info(f"Stored parse artifact {artifact.id} with {len(extracted.warnings)} warnings")

        await self.store.transition_job(job, JobStatus.PARSED)

        # --------------------------------------------------
        # STEP 7: NORMALIZE + UPSERT
        # --------------------------------------------------
        ctx = NormalizeContext(
            source_key=attempt.source_key,
            method=adapter.method,
            fetched_at=attempt.fetched_at,
            source_url=attempt.source_url,
            session_reused=attempt.session_reused,
            target=descriptor,
        )

        try:
            with timer.step("normalize"):
                normalized = adapter.normalize(record, ctx)
        except NormalizationError as e:
            return await self._fail(attempt, e.message, e)
        except ValidationError as e:
            error = NormalizationError(
                "Normalized parcel failed validation",
                context={"source_key": attempt.source_key, "errors": e.error_count()},
                original_exception=e,
            )
            return await self._fail(attempt, error.message, error)

        attempt.confidence = normalized.confidence

        try:
            with timer.step("upsert"):
                upserted = await self.loader.upsert(
                    normalized.parcel,
                    source_id=attempt.source_id,
                    fetch_id=primary.id,
                    run_id=attempt.run_id,
                )
        except StorageError as e:
            return await self._fail(attempt, e.message, e)

        await self.store.transition_job(job, JobStatus.NORMALIZED)
        attempt.stats.update(upserted.to_stats())

        # --------------------------------------------------
        # STEP 8: FINALIZE
        # --------------------------------------------------
        parcel = normalized.parcel
        attempt.stats["outcome"] = "success"
        attempt.stats["confidence"] = normalized.confidence
        attempt.stats["parcel_key"] = str(parcel.key)
        await self._finish_owned_run(attempt, RunStatus.SUCCEEDED)

        logger.info(
            f"Ingested {parcel.key} from {attempt.source_key} "
            f"(confidence={normalized.confidence}, sales+{upserted.sales_inserted})"
        )

        return IngestionResult(
            status=IngestionStatus.SUCCESS,
            run_id=attempt.run_id,
            job_id=attempt.job_id,
            parcel_id=upserted.parcel_id,
            parcel_key=str(parcel.key),
            data=parcel,
            provenance=attempt.envelope(),
            stats=attempt.public_stats(),
        )

    async def _persist_raw(self, attempt, target_key, payloads, force, fetched_at):
        """RawFetch per payload, reusing fresh identical ones unless forced."""
        fetches = []
        reused_all = True
        for payload in payloads:
            digest = payload.content_hash
            prior = None
            if not force:
                prior = await self.store.find_recent_fetch(
                    attempt.source_id, target_key, digest, self.options.freshness_window
                )
            if prior is not None:
                logger.info(f"Raw fetch {prior.id} reused for {target_key} (hash {digest[:12]})")
                fetches.append(prior)
                continue

            reused_all = False
            fetches.append(
                await self.store.save_raw_fetch(
                    run_id=attempt.run_id,
                    job_id=attempt.job_id,
                    source_id=attempt.source_id,
                    target_key=target_key,
                    request_url=payload.url,
                    request_method=payload.method,
                    response_status=payload.status,
                    body=payload.body,
                    content_hash=digest,
                    kind=payload.kind,
                    metadata=payload.metadata,
                    fetched_at=fetched_at,
                )
            )

        job = await self.store.get_job(attempt.job_id)
        self.store.set_job_fetches(job, fetches)
        await self.store.commit()
        return fetches, reused_all

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _skip(self, attempt: "_Attempt", reason: str, kind: str) -> IngestionResult:
        logger.info(f"Skipping {attempt.source_key} job {attempt.job_id}: {reason}")
        await self._fail_job(attempt, reason)

        attempt.stats["outcome"] = "skipped"
        attempt.stats["reason"] = kind
        await self._finish_owned_run(attempt, RunStatus.SUCCEEDED)

        return IngestionResult(
            status=IngestionStatus.SKIPPED,
            run_id=attempt.run_id,
            job_id=attempt.job_id,
            error=reason,
            stats=attempt.public_stats(),
        )

    async def _fail(
        self,
        attempt: "_Attempt",
        message: str,
        error: Optional[ParcelIngestionError] = None,
    ) -> IngestionResult:
        if error is not None:
            logger.error(
                f"Ingestion from {attempt.source_key} failed: {message}",
                extra={"error_context": error.to_dict()},
            )
        attempt.stats["outcome"] = "failed"
        try:
            await self._fail_job(attempt, message)
            await self._finish_owned_run(attempt, RunStatus.FAILED, error=message)
        except (SQLAlchemyError, StorageError) as e:
            logger.error(f"Could not record failure of job {attempt.job_id}: {_describe(e)}")
            await self._safe_rollback()

        return IngestionResult(
            status=IngestionStatus.FAILED,
            run_id=attempt.run_id,
            job_id=attempt.job_id,
            error=message,
            provenance=attempt.envelope(),
            stats=attempt.public_stats(),
        )

    async def _safe_rollback(self) -> None:
        try:
            await self.store.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {_describe(e)}")

    async def _safe_finish_run(self, run_id: UUID, status: RunStatus, stats: Dict[str, Any], error: str) -> None:
        try:
            await self.store.finish_run(run_id, status, stats=stats, error=error)
        except (SQLAlchemyError, StorageError) as e:
            logger.error(f"Could not finish run {run_id}: {_describe(e)}")
            await self._safe_rollback()

    async def _fail_job(self, attempt: "_Attempt", message: str) -> None:
        # reload: a rollback expires every instance in the session
        job = await self.store.get_job(attempt.job_id)
        if job is None:
            return
        if JobStatus(job.status).can_transition_to(JobStatus.FAILED):
            await self.store.transition_job(job, JobStatus.FAILED, error=message)
        else:
            logger.warning(f"Job {attempt.job_id} already {JobStatus(job.status).value}; not marking failed")

    async def _finish_owned_run(
        self,
        attempt: "_Attempt",
        status: RunStatus,
        error: Optional[str] = None,
    ) -> None:
        if not attempt.owns_run:
            return
        await self.store.finish_run(attempt.run_id, status, stats=attempt.public_stats(), error=error)

    # ------------------------------------------------------------------
    # Reparse
    # ------------------------------------------------------------------

    async def reparse(self, job_id: UUID) -> ReparseResult:
        """
        Replay extract over a job's stored raw fetches with the adapter's
        current parser version.

        Returns the existing artifact when one with the same parser version
        and content signature exists for the primary fetch; stores a new
        artifact otherwise.

        Raises:
            StorageError: unknown job, or a job without raw fetches
            UnknownSourceError: the job's source is no longer registered
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise StorageError(f"Ingestion job {job_id} not found", context={"job_id": str(job_id)})

        fetches = await self.store.get_raw_fetches(job.fetch_ids or [])
        if not fetches:
            raise StorageError(
                f"Ingestion job {job_id} has no raw fetches",
                context={"job_id": str(job_id), "status": JobStatus(job.status).value},
            )

        source_key = (job.input or {}).get("source_key")
        adapter: SourceAdapter = self.registry.get(source_key)

        extracted = adapter.extract([_payload_from_fetch(fetch) for fetch in fetches])
        payload = extracted.record.model_dump(mode="json")
        signature = content_signature(payload)
        primary = fetches[0]

        existing = await self.store.find_artifact(primary.id, adapter.parser_version, signature)
        if existing is not None:
            logger.info(f"Reparse of job {job_id} reproduced artifact {existing.id}")
            return ReparseResult(artifact=existing, reused=True, warnings=list(extracted.warnings))

        artifact = await self.store.save_parse_artifact(
            job_id=job.id,
            source_id=job.source_id,
            fetch_id=primary.id,
            parser_version=adapter.parser_version,
            extracted=payload,
            warnings=extracted.warnings,
            dom_signature=extracted.dom_signature,
        )
        await self.store.commit()
        logger.info(f"Reparse of job {job_id} stored artifact {artifact.id} ({adapter.parser_version})")
        return ReparseResult(artifact=artifact, reused=False, warnings=list(extracted.warnings))


@dataclass
class _Attempt:
    """Identifiers of one ingest call, kept as plain values across rollbacks."""
    source_key: str
    source_id: UUID
    run_id: UUID
    job_id: UUID
    owns_run: bool
    adapter: SourceAdapter
    timer: _Timer = field(default_factory=_Timer)
    stats: Dict[str, Any] = field(default_factory=dict)

    # filled in as stages complete
    source_url: Optional[str] = None
    fetched_at: Optional[datetime] = None
    session_reused: bool = False
    confidence: float = 0.0

    def public_stats(self) -> Dict[str, Any]:
        return {**self.stats, "source_key": self.source_key, "steps_ms": dict(self.timer.steps)}

    def envelope(self) -> Optional[ProvenanceEnvelope]:
        """Provenance of what was fetched so far; None before a fetch succeeded."""
        if self.fetched_at is None:
            return None
        return ProvenanceEnvelope(
            source=self.source_key,
            method=self.adapter.method,
            confidence=self.confidence,
            source_url=self.source_url,
            session_reused=self.session_reused,
            timestamp=self.fetched_at,
        )


def _describe(error: Exception) -> str:
    """One-line message for a failure, driver detail for database errors."""
    if isinstance(error, ParcelIngestionError):
        return error.message
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig) or error.__class__.__name__
    return str(error) or error.__class__.__name__


def _payload_from_fetch(fetch: RawFetch) -> RawPayload:
    return RawPayload(
        url=fetch.request_url,
        body=fetch.response_body or "",
        kind=FetchKind(fetch.kind),
        status=fetch.response_status,
        method=fetch.request_method,
        metadata=dict(fetch.fetch_metadata or {}),
    )
