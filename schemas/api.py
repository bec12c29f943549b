"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from uuid import UUID
from models.base import RunStatus, JobStatus, TriggerOrigin
from schemas.source import SourceSummary


# ============================================================================
# Ingestion Schemas
# ============================================================================

class IngestRequest(BaseModel):
    """Body of POST /parcels/ingest"""
    source_key: Optional[str] = Field(None, description="Registered source; defaults to PARCEL_DEFAULT_SOURCE")
    address: Optional[str] = Field(None, max_length=500)
    parcel_id: Optional[str] = Field(None, max_length=100)
    county_fips: Optional[str] = Field(None, pattern=r"^\d{3}$")
    force: bool = False
    purpose: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def address_or_parcel_id(self):
        if not ((self.address or "").strip() or (self.parcel_id or "").strip()):
            raise ValueError("Either address or parcel_id is required")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "source_key": "fl-sarasota-pa",
                "address": "1660 Ringling Blvd, Sarasota, FL 34236",
                "force": False,
            }
        }


# ============================================================================
# Source Schemas
# ============================================================================

class SourceListResponse(BaseModel):
    sources: List[SourceSummary]
    default_source: str


# ============================================================================
# Parcel Schemas
# ============================================================================

class AssessmentResponse(BaseModel):
    tax_year: int
    just_value: Optional[float] = None
    assessed_value: Optional[float] = None
    taxable_value: Optional[float] = None
    land_value: Optional[float] = None
    improvement_value: Optional[float] = None
    exemptions: List[str] = Field(default_factory=list)
    ad_valorem_taxes: Optional[float] = None
    non_ad_valorem_taxes: Optional[float] = None

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    sale_date: Optional[date] = None
    sale_price: Optional[float] = None
    qualified: Optional[bool] = None
    deed_type: Optional[str] = None
    instrument: Optional[str] = None
    book_page: Optional[str] = None
    grantor: Optional[str] = None
    grantee: Optional[str] = None
    sale_key: str

    class Config:
        from_attributes = True


class ParcelResponse(BaseModel):
    id: UUID
    parcel_key: str
    state_fips: str
    county_fips: str
    parcel_id_raw: Optional[str] = None
    parcel_id_norm: str
    situs_address: Dict[str, Any] = Field(default_factory=dict)
    normalized_address: Optional[str] = None
    owner_name: Optional[str] = None
    land: Dict[str, Any] = Field(default_factory=dict)
    improvements: Dict[str, Any] = Field(default_factory=dict)
    market: Dict[str, Any] = Field(default_factory=dict)
    confidence: float
    provenance: Dict[str, Any] = Field(default_factory=dict)
    canonical_source_id: Optional[UUID] = None
    canonical_fetch_id: Optional[UUID] = None
    last_run_id: Optional[UUID] = None
    last_seen_at: datetime
    assessments: List[AssessmentResponse] = Field(default_factory=list)
    sales: List[SaleResponse] = Field(default_factory=list)

    @classmethod
    def from_rows(cls, parcel, assessments, sales) -> "ParcelResponse":
        return cls(
            id=parcel.id,
            parcel_key=f"{parcel.state_fips}-{parcel.county_fips}-{parcel.parcel_id_norm}",
            state_fips=parcel.state_fips,
            county_fips=parcel.county_fips,
            parcel_id_raw=parcel.parcel_id_raw,
            parcel_id_norm=parcel.parcel_id_norm,
            situs_address=parcel.situs_address or {},
            normalized_address=parcel.normalized_address,
            owner_name=parcel.owner_name,
            land=parcel.land or {},
            improvements=parcel.improvements or {},
            market=parcel.market or {},
            confidence=parcel.confidence,
            provenance=parcel.provenance or {},
            canonical_source_id=parcel.canonical_source_id,
            canonical_fetch_id=parcel.canonical_fetch_id,
            last_run_id=parcel.last_run_id,
            last_seen_at=parcel.last_seen_at,
            assessments=[AssessmentResponse.model_validate(a) for a in assessments],
            sales=[SaleResponse.model_validate(s) for s in sales],
        )


# ============================================================================
# Run Schemas
# ============================================================================

class JobSummary(BaseModel):
    id: UUID
    source_id: UUID
    target_key: Optional[str] = None
    status: JobStatus
    status_history: List[str] = Field(default_factory=list)
    attempts: int
    last_error: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


class RunResponse(BaseModel):
    id: UUID
    triggered_by: TriggerOrigin
    purpose: Optional[str] = None
    status: RunStatus
    stats: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None
    jobs: List[JobSummary] = Field(default_factory=list)

    class Config:
        use_enum_values = True


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy or unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    registered_sources: int = 0


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
