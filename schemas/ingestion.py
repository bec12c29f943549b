"""
Pydantic schemas for pipeline input and output
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID
import enum
from schemas.parcel import NormalizedParcel


class IngestionStatus(str, enum.Enum):
    """Outcome of one ingest call"""
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    IngestionStatus.SUCCESS: 200,
    IngestionStatus.SKIPPED: 404,
    IngestionStatus.FAILED: 500,
}


class ResolveInput(BaseModel):
    """
    What the caller knows about the target.

    county_fips is a hint for statewide sources (MLS) whose records do not
    always carry the county.
    """
    address: Optional[str] = None
    parcel_id: Optional[str] = None
    county_fips: Optional[str] = Field(None, pattern=r"^\d{3}$")

    @property
    def is_empty(self) -> bool:
        return not ((self.address or "").strip() or (self.parcel_id or "").strip())


class ProvenanceEnvelope(BaseModel):
    """Where a returned parcel came from"""
    source: str
    method: str
    confidence: float = Field(..., ge=0, le=1)
    source_url: Optional[str] = None
    session_reused: bool = False
    timestamp: datetime


class IngestionResult(BaseModel):
    """Everything a caller learns from one ingest call"""
    status: IngestionStatus
    run_id: Optional[UUID] = None
    job_id: Optional[UUID] = None
    parcel_id: Optional[UUID] = None
    parcel_key: Optional[str] = None
    data: Optional[NormalizedParcel] = None
    provenance: Optional[ProvenanceEnvelope] = None
    error: Optional[str] = None
    stats: Dict[str, Any] = Field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return self.status.http_status
