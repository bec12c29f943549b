"""
SQLAlchemy ORM models for database tables.

This package defines the storage schema of the ingestion platform:

Models:
    base: Base declarative class, JSONType and shared enums
        (SourceType, PlatformFamily, TriggerOrigin, RunStatus, JobStatus, FetchKind)
    source: Registered data providers
    ingestion_run: One ingestion session, with stats and error capture
    ingestion_job: One target from one source within a run
    raw_fetch: Immutable captured responses with content hash
    parse_artifact: Versioned structured extraction of a job's raw fetches
    parcel: Canonical parcels with assessments and sales

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere, so the same models run
    against SQLite in tests.

Usage:
    from models import Parcel, IngestionRun, RawFetch
    from models.base import JobStatus, RunStatus

Relationships:
    - IngestionRun → IngestionJob (one-to-many)
    - IngestionJob → RawFetch, ParseArtifact (one-to-many)
    - Parcel → ParcelAssessment, ParcelSale (one-to-many)
    - Parcel is keyed independently of jobs
"""

from models.base import (
    Base,
    JSONType,
    SourceType,
    PlatformFamily,
    TriggerOrigin,
    RunStatus,
    JobStatus,
    FetchKind,
)
from models.source import Source
from models.ingestion_run import IngestionRun
from models.ingestion_job import IngestionJob
from models.raw_fetch import RawFetch
from models.parse_artifact import ParseArtifact
from models.parcel import Parcel, ParcelAssessment, ParcelSale

__all__ = [
    "Base",
    "JSONType",
    "SourceType",
    "PlatformFamily",
    "TriggerOrigin",
    "RunStatus",
    "JobStatus",
    "FetchKind",
    "Source",
    "IngestionRun",
    "IngestionJob",
    "RawFetch",
    "ParseArtifact",
    "Parcel",
    "ParcelAssessment",
    "ParcelSale",
]
