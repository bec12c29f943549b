"""
Parcel endpoints: trigger ingestion, read canonical parcels and runs
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_registry
from core.parcel_id import ParcelKey
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionPipeline
from ingestion.loaders.provenance_store import ProvenanceStore
from models.base import TriggerOrigin
from schemas.api import (
    ErrorResponse,
    IngestRequest,
    JobSummary,
    ParcelResponse,
    RunResponse,
    SourceListResponse,
)
from schemas.ingestion import IngestionResult, ResolveInput
from typing import Optional
from uuid import UUID
import time
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/parcels", tags=["Parcels"])


@router.post(
    "/ingest",
    response_model=IngestionResult,
    responses={404: {"model": IngestionResult}, 500: {"model": IngestionResult}},
)
async def ingest_parcel(
    body: IngestRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    registry: SourceRegistry = Depends(get_registry),
):
    """
    Ingest one parcel from one source.

    Status codes:
    - 200: SUCCESS, canonical parcel upserted
    - 404: SKIPPED, target not found or source not usable here
    - 500: FAILED
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    logger.info(
        f"[{request_id}] POST /parcels/ingest - source={body.source_key or registry.default_source}, "
        f"address={body.address!r}, parcel_id={body.parcel_id!r}, force={body.force}"
    )

    pipeline = IngestionPipeline(db, registry)
    result = await pipeline.ingest(
        body.source_key,
        ResolveInput(address=body.address, parcel_id=body.parcel_id, county_fips=body.county_fips),
        force=body.force,
        trigger=TriggerOrigin.API,
        purpose=body.purpose,
    )

    logger.info(
        f"[{request_id}] Ingest finished: {result.status.value} "
        f"({(time.time() - start_time) * 1000:.2f}ms)"
    )
    return JSONResponse(status_code=result.http_status, content=result.model_dump(mode="json"))


@router.get("/sources", response_model=SourceListResponse)
async def list_sources(registry: SourceRegistry = Depends(get_registry)):
    """Registered sources in registration order"""
    return SourceListResponse(sources=registry.list(), default_source=registry.default_source)


@router.get("/by-key", response_model=ParcelResponse, responses={404: {"model": ErrorResponse}})
async def get_parcel_by_key(
    key: Optional[str] = Query(None, description='Parcel key, e.g. "12-081-1234567890"'),
    state_fips: Optional[str] = Query(None, pattern=r"^\d{2}$"),
    county_fips: Optional[str] = Query(None, pattern=r"^\d{3}$"),
    parcel_id: Optional[str] = Query(None, description="Parcel id in any formatting"),
    db: AsyncSession = Depends(get_db),
):
    """Canonical parcel by key, or by its (state, county, parcel id) parts"""
    try:
        if key:
            parcel_key = ParcelKey.parse(key)
        elif state_fips and county_fips and parcel_id:
            parcel_key = ParcelKey.build(state_fips, county_fips, parcel_id)
        else:
            raise HTTPException(status_code=400, detail="Provide key, or state_fips, county_fips and parcel_id")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    store = ProvenanceStore(db)
    parcel = await store.find_parcel_by_key(parcel_key.state_fips, parcel_key.county_fips, parcel_key.parcel_id_norm)
    if parcel is None:
        raise HTTPException(status_code=404, detail=f"Parcel {parcel_key} not found")
    return await _parcel_response(store, parcel)


@router.get("/runs/{run_id}", response_model=RunResponse, responses={404: {"model": ErrorResponse}})
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Ingestion run with its jobs"""
    store = ProvenanceStore(db)
    run = await store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

    return RunResponse(
        id=run.id,
        triggered_by=run.triggered_by,
        purpose=run.purpose,
        status=run.status,
        stats=run.stats or {},
        error=run.error,
        created_at=run.created_at,
        updated_at=run.updated_at,
        finished_at=run.finished_at,
        jobs=[JobSummary.model_validate(job) for job in run.jobs],
    )


@router.get("/{parcel_id}", response_model=ParcelResponse, responses={404: {"model": ErrorResponse}})
async def get_parcel(parcel_id: UUID, db: AsyncSession = Depends(get_db)):
    """Canonical parcel by id, with assessments and sales"""
    store = ProvenanceStore(db)
    parcel = await store.get_parcel(parcel_id)
    if parcel is None:
        raise HTTPException(status_code=404, detail=f"Parcel {parcel_id} not found")
    return await _parcel_response(store, parcel)


async def _parcel_response(store: ProvenanceStore, parcel) -> ParcelResponse:
    assessments = await store.get_parcel_assessments(parcel.id)
    sales = await store.get_parcel_sales(parcel.id)
    return ParcelResponse.from_rows(parcel, assessments, sales)
