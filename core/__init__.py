"""
Core utilities and configuration for the parcel ingestion platform.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine, session factory and table creation
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    hashing: Deterministic content hashing for dedup and provenance
    parcel_id: Parcel id normalization and the canonical parcel key

Usage:
    from core.config import settings
    from core.database import async_session_maker, create_tables
    from core.exceptions import UnknownSourceError, TransientFetchError
    from core.logging import setup_logging
    from core.parcel_id import ParcelKey, normalize_parcel_id

Example:
    # Initialize logging
    setup_logging()

    # Canonical key for a raw parcel id
    key = ParcelKey.build("12", "081", "  5788-1000/9 ")
    assert str(key) == "12-081-578810009"
"""

__all__ = [
    "settings",
    "async_session_maker",
    "create_tables",
    "setup_logging",
    "sha256",
    "content_hash",
    "content_signature",
    "normalize_parcel_id",
    "ParcelKey",
    # Exceptions
    "FailureKind",
    "ParcelIngestionError",
    "RetryableError",
    "NonRetryableError",
    "RegistryError",
    "UnknownSourceError",
    "DuplicateSourceError",
    "RegistryFrozenError",
    "AdapterError",
    "TargetNotFoundError",
    "TransientFetchError",
    "ConfigMissingError",
    "FatalFetchError",
    "NormalizationError",
    "StorageError",
    "UpsertError",
    "InvalidStatusTransitionError",
]
