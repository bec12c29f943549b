"""
Source adapter contract.

Every source implements four independently callable operations:

    resolve   -> locate the target record on the source (None = not found)
    fetch     -> retrieve raw payloads, throttled by the source's limiter
    extract   -> parse raw payloads into a structured record (pure)
    normalize -> map the structured record to a NormalizedParcel + confidence

The pipeline only talks to this interface; it knows nothing about portals,
browsers or HTML.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from datetime import datetime

from core.hashing import content_hash
from ingestion.rate_limit import RateLimiter, get_rate_limiter
from models.base import FetchKind
from schemas.ingestion import ResolveInput
from schemas.parcel import NormalizedParcel
from schemas.records import StructuredRecord, record_from_payload
from schemas.source import SourceConfig
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Stage inputs and outputs
# ============================================================================

@dataclass(frozen=True)
class TargetDescriptor:
    """
    Where the target lives on the source.

    target_key is stable for a given record on a given source and is what
    raw-fetch dedup is scoped by.
    """
    target_key: str
    url: str
    parcel_id_raw: Optional[str] = None
    address: Optional[str] = None
    county_fips: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawPayload:
    """One captured response body, exactly as received."""
    url: str
    body: str
    kind: FetchKind = FetchKind.HTML
    status: Optional[int] = 200
    method: str = "GET"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content_hash(self) -> str:
        return content_hash(self.body)


@dataclass(frozen=True)
class FetchOptions:
    timeout: float = 60.0
    nav_timeout: float = 45.0


@dataclass
class FetchResult:
    payloads: List[RawPayload]
    session_reused: bool = False
    fetched_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def primary(self) -> RawPayload:
        return self.payloads[0]


@dataclass
class ExtractResult:
    record: StructuredRecord
    warnings: List[str] = field(default_factory=list)
    dom_signature: Optional[str] = None


@dataclass(frozen=True)
class NormalizeContext:
    """What normalize may know besides the record itself."""
    source_key: str
    method: str
    fetched_at: datetime
    source_url: Optional[str] = None
    session_reused: bool = False
    target: Optional[TargetDescriptor] = None


@dataclass
class NormalizeResult:
    parcel: NormalizedParcel
    confidence: float


# ============================================================================
# Adapter
# ============================================================================

class SourceAdapter(ABC):
    """
    Abstract base class for all source adapters.

    Responsibilities:
    - Translate one source's shape into the shared stage contract
    - Classify failures (NOT_FOUND, TRANSIENT, CONFIG_MISSING, FATAL)
    - Throttle every network call through the shared per-source limiter

    Subclasses set ``parser_version`` and bump it whenever extract output
    for the same raw bytes could change.
    """

    parser_version: str = "unversioned"
    method: str = "http"

    def __init__(self, config: SourceConfig, rate_limiter: Optional[RateLimiter] = None):
        self.config = config
        self.rate_limiter = rate_limiter or get_rate_limiter(config.source_key, config.rate_limit)

    @property
    def source_key(self) -> str:
        return self.config.source_key

    async def throttle(self) -> None:
        """Wait for this source's rate limiter before a network call."""
        await self.rate_limiter.acquire()

    @abstractmethod
    async def resolve(self, target: ResolveInput) -> Optional[TargetDescriptor]:
        """
        Locate the canonical record on the source.

        Returns:
            TargetDescriptor, or None when the source has no such record

        Raises:
            TargetNotFoundError, TransientFetchError, ConfigMissingError,
            FatalFetchError
        """
        pass

    @abstractmethod
    async def fetch(self, target: TargetDescriptor, options: FetchOptions) -> FetchResult:
        """
        Retrieve raw payloads for a resolved target.

        Raises:
            TargetNotFoundError, TransientFetchError, ConfigMissingError,
            FatalFetchError
        """
        pass

    @abstractmethod
    def extract(self, payloads: Sequence[RawPayload]) -> ExtractResult:
        """
        Parse raw payloads into a structured record.

        Must be deterministic and must not raise on malformed input:
        unrecognised fields and parse failures become warnings.
        """
        pass

    @abstractmethod
    def normalize(self, record: StructuredRecord, ctx: NormalizeContext) -> NormalizeResult:
        """
        Map a structured record to the canonical schema.

        Raises:
            NormalizationError: when the record cannot produce a parcel key
        """
        pass

    async def close(self) -> None:
        """Release clients the adapter created for itself."""
        return None

    def record_from_payload(self, payload: Dict[str, Any]) -> StructuredRecord:
        """Rebuild the typed record from a stored ParseArtifact payload."""
        return record_from_payload(payload)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.source_key} parser={self.parser_version}>"
