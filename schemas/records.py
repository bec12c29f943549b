"""
Structured records: the typed, pre-canonical output of Adapter.extract

Records are a closed, tagged set. Each variant carries a literal ``kind``
and the StructuredRecord union dispatches on it, so a stored ParseArtifact
payload always round-trips to the variant that produced it.

Variants:
    AssessorRecord (kind="assessor"): county property-appraiser pages
    MlsRecord (kind="mls"): MLS analytics scraped from captured JSON
"""

from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, List, Literal, Union, Annotated


# ============================================================================
# Assessor
# ============================================================================

class BuildingInfo(BaseModel):
    year_built: Optional[int] = None
    effective_year_built: Optional[int] = None
    living_area_sqft: Optional[float] = None
    total_area_sqft: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    stories: Optional[float] = None
    construction_type: Optional[str] = None
    exterior_walls: Optional[str] = None
    has_pool: Optional[bool] = None
    garage_spaces: Optional[int] = None


class LandInfo(BaseModel):
    lot_size_acres: Optional[float] = None
    lot_size_sqft: Optional[float] = None
    land_use: Optional[str] = None


class ValuationRow(BaseModel):
    """One tax year of values as printed by the portal"""
    year: int
    just_total: Optional[float] = None
    just_land: Optional[float] = None
    just_building: Optional[float] = None
    assessed_total: Optional[float] = None
    taxable_total: Optional[float] = None
    ad_valorem_taxes: Optional[float] = None
    non_ad_valorem_taxes: Optional[float] = None


class SaleRow(BaseModel):
    date: Optional[str] = None  # as printed, parsed during normalize
    price: Optional[float] = None
    deed_type: Optional[str] = None
    instrument_number: Optional[str] = None
    book_page: Optional[str] = None
    grantor: Optional[str] = None
    grantee: Optional[str] = None
    qualified: Optional[bool] = None


class ExtraFeature(BaseModel):
    description: str
    year: Optional[int] = None
    area_sqft: Optional[float] = None
    value: Optional[float] = None


class Inspection(BaseModel):
    date: Optional[str] = None
    type: Optional[str] = None
    result: Optional[str] = None
    inspector: Optional[str] = None
    notes: Optional[str] = None


class AssessorRecord(BaseModel):
    kind: Literal["assessor"] = "assessor"

    parcel_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    owner: Optional[str] = None

    use_code: Optional[str] = None
    use_description: Optional[str] = None
    legal_description: Optional[str] = None
    subdivision: Optional[str] = None
    zoning: Optional[str] = None
    exemptions: List[str] = Field(default_factory=list)

    building: BuildingInfo = Field(default_factory=BuildingInfo)
    land: LandInfo = Field(default_factory=LandInfo)
    valuations: List[ValuationRow] = Field(default_factory=list)
    sales: List[SaleRow] = Field(default_factory=list)
    extra_features: List[ExtraFeature] = Field(default_factory=list)
    inspections: List[Inspection] = Field(default_factory=list)


# ============================================================================
# MLS
# ============================================================================

class SellScore(BaseModel):
    score: Optional[float] = None
    indicator: Optional[str] = None
    as_of: Optional[str] = None


class RealAvm(BaseModel):
    value: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None
    confidence: Optional[float] = None
    confidence_label: Optional[str] = None
    as_of: Optional[str] = None


class RentalPoint(BaseModel):
    period: str
    value: float


class RentalTrends(BaseModel):
    summary: Optional[str] = None
    current_rent: Optional[float] = None
    yoy_change_pct: Optional[float] = None
    series: List[RentalPoint] = Field(default_factory=list)


class Listing(BaseModel):
    status: Optional[str] = None
    list_price: Optional[float] = None
    close_price: Optional[float] = None
    list_date: Optional[str] = None
    close_date: Optional[str] = None
    days_on_market: Optional[float] = None
    mls_number: Optional[str] = None
    brokerage: Optional[str] = None
    agent: Optional[str] = None


class MlsRecord(BaseModel):
    kind: Literal["mls"] = "mls"

    address_searched: Optional[str] = None
    matched_address: Optional[str] = None
    parcel_id: Optional[str] = None
    county_fips: Optional[str] = None
    source_url: Optional[str] = None

    sell_score: Optional[SellScore] = None
    real_avm: Optional[RealAvm] = None
    rental_trends: Optional[RentalTrends] = None
    listings: List[Listing] = Field(default_factory=list)


StructuredRecord = Annotated[Union[AssessorRecord, MlsRecord], Field(discriminator="kind")]

structured_record_adapter = TypeAdapter(StructuredRecord)


def record_from_payload(payload: dict) -> Union[AssessorRecord, MlsRecord]:
    """Rebuild a typed record from a stored ParseArtifact payload."""
    return structured_record_adapter.validate_python(payload)
