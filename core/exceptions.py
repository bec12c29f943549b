"""
Custom exceptions for the parcel ingestion platform with structured error context.

This module provides the exception hierarchy used by the source registry,
the source adapters, the provenance store and the ingestion pipeline. Each
exception includes context information for debugging and monitoring.

Exception Hierarchy:
    ParcelIngestionError (base)
    ├── RegistryError
    │   ├── UnknownSourceError
    │   ├── DuplicateSourceError
    │   └── RegistryFrozenError
    ├── AdapterError
    │   ├── TargetNotFoundError      (NOT_FOUND)
    │   ├── TransientFetchError      (TRANSIENT)
    │   ├── ConfigMissingError       (CONFIG_MISSING)
    │   └── FatalFetchError          (FATAL)
    ├── NormalizationError
    ├── StorageError
    │   ├── UpsertError
    │   └── InvalidStatusTransitionError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime
import enum


class FailureKind(str, enum.Enum):
    """Classification of adapter failures"""
    NOT_FOUND = "NOT_FOUND"
    TRANSIENT = "TRANSIENT"
    CONFIG_MISSING = "CONFIG_MISSING"
    FATAL = "FATAL"


class ParcelIngestionError(Exception):
    """
    Base exception for all ingestion-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ParcelIngestionError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 503)
    - Browser navigation timeouts
    """
    pass


class NonRetryableError(ParcelIngestionError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Unknown or misconfigured sources
    - Resource not found (HTTP 404)
    - Missing runtime configuration
    - Unexpected page structure
    """
    pass


# ============================================================================
# Registry Errors
# ============================================================================

class RegistryError(NonRetryableError):
    """Base exception for source registry failures."""
    pass


class UnknownSourceError(RegistryError):
    """
    Raised when a source key is not registered.

    Context should include:
        - source_key: The requested key
        - registered: Keys currently registered
    """
    pass


class DuplicateSourceError(RegistryError):
    """Raised when a source key is registered twice."""
    pass


class RegistryFrozenError(RegistryError):
    """Raised when registering into a registry after startup."""
    pass


# ============================================================================
# Adapter Errors
# ============================================================================

class AdapterError(ParcelIngestionError):
    """Base exception for source adapter failures."""

    kind: FailureKind = FailureKind.FATAL


class TargetNotFoundError(NonRetryableError, AdapterError):
    """
    The target legitimately does not exist on the source.

    Context should include:
        - source_key: The source searched
        - address / parcel_id: The input that was searched
    """

    kind = FailureKind.NOT_FOUND


class TransientFetchError(RetryableError, AdapterError):
    """
    Network or timeout failures that should be retried.

    Context should include:
        - url: The URL that failed
        - status_code: HTTP status code (if applicable)
        - timeout: Timeout in seconds (if applicable)
    """

    kind = FailureKind.TRANSIENT


class ConfigMissingError(NonRetryableError, AdapterError):
    """
    The adapter cannot run in the current environment, e.g. the browser
    automation runtime or a session file is unavailable.
    """

    kind = FailureKind.CONFIG_MISSING


class FatalFetchError(NonRetryableError, AdapterError):
    """Unexpected structural failure while fetching."""

    kind = FailureKind.FATAL


# ============================================================================
# Transformation Errors
# ============================================================================

class NormalizationError(NonRetryableError):
    """
    Raised when a structured record cannot be mapped to the canonical schema.

    Context should include:
        - source_key: The source of the record
        - missing: Fields required for the canonical key
    """
    pass


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(ParcelIngestionError):
    """Base exception for provenance store failures."""
    pass


class UpsertError(StorageError):
    """
    Raised when the canonical upsert fails.

    Context should include:
        - parcel_key: Key of the parcel being upserted
        - table_name: Table that failed
    """
    pass


class InvalidStatusTransitionError(StorageError):
    """
    Raised when a Job or Run status would move backwards or out of a
    terminal state.
    """
    pass
