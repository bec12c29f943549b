"""
Parcel ingestion pipeline components.

This package contains everything between "ingest this address from that
source" and a canonical parcel row:

Modules:
    base: SourceAdapter contract and the stage inputs/outputs
    registry: Source key -> (config, adapter factory), frozen at startup
    runner: IngestionPipeline orchestrating resolve, fetch, extract,
        normalize and persist
    retry: RetryPolicy and call_with_retry for transient fetch failures
    rate_limit: Shared per-source token-bucket limiters
    browser: BrowserDriver capability and the Playwright implementation
    confidence: ConfidenceTable scoring of structured records

Subpackages:
    sources: Source adapters (Manatee PAO, Sarasota PAO, Stellar MLS Realist)
        and the shared assessor-page parser
    loaders: Provenance store (runs, jobs, raw fetches, artifacts) and the
        idempotent canonical parcel upsert

Architecture:
    Each ingest call runs its stages sequentially:

    1. Resolve - locate the record on the source
    2. Fetch - capture raw payloads, retried with backoff when transient
    3. Extract - parse payloads into a versioned structured record
    4. Normalize - map to the canonical parcel and score confidence
    5. Persist - raw fetches, then parse artifact, then the parcel upsert

    Raw fetches are immutable and deduplicated by content hash, so
    re-running an ingestion with unchanged upstream content writes no new
    provenance rows and leaves the canonical parcel unchanged.

Usage:
    from ingestion.registry import build_default_registry
    from ingestion.runner import IngestionPipeline
    from schemas.ingestion import ResolveInput

Example:
    registry = build_default_registry()
    pipeline = IngestionPipeline(session, registry)

    result = await pipeline.ingest(
        "fl-sarasota-pa",
        ResolveInput(address="1660 Ringling Blvd, Sarasota, FL 34236"),
    )

    print(result.status, result.parcel_key)

Error Handling:
    Adapters raise the classified errors from core.exceptions
    (TargetNotFoundError, TransientFetchError, ConfigMissingError,
    FatalFetchError). The pipeline maps them to SKIPPED or FAILED results;
    callers never see the exceptions themselves.
"""

__all__ = [
    "SourceAdapter",
    "SourceRegistry",
    "IngestionPipeline",
    "RetryPolicy",
    "RateLimiter",
    "BrowserDriver",
    "ConfidenceTable",
]
