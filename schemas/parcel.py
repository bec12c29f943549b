"""
Pydantic schemas for the canonical parcel with validation

Every source adapter maps its structured record into NormalizedParcel.
Ordering and key invariants are enforced here so no adapter can skip them.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import date, datetime
from core.hashing import compute_sale_key
from core.parcel_id import ParcelKey, normalize_parcel_id


class NormalizedAddress(BaseModel):
    """Situs address components plus one normalized full-address string"""
    raw: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = "FL"
    zip_code: Optional[str] = None
    normalized_full: str = ""

    @classmethod
    def build(
        cls,
        address: Optional[str],
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip_code: Optional[str] = None,
    ) -> "NormalizedAddress":
        """Join non-empty parts with ", " and upper-case; state defaults to FL."""
        raw = address.strip() if address else None
        city = city.strip() if city else None
        state = state.strip() if state else None
        zip_code = zip_code.strip() if zip_code else None

        parts = [p for p in (raw, city, state, zip_code) if p]
        return cls(
            raw=raw,
            line1=raw,
            city=city,
            state=state or "FL",
            zip_code=zip_code,
            normalized_full=", ".join(parts).upper(),
        )


class Land(BaseModel):
    use_code: Optional[str] = None
    use_description: Optional[str] = None
    legal_description: Optional[str] = None
    acreage: Optional[float] = Field(None, ge=0)
    lot_size_sqft: Optional[float] = Field(None, ge=0)
    zoning: Optional[str] = None


class Improvements(BaseModel):
    year_built: Optional[int] = None
    effective_year_built: Optional[int] = None
    living_area_sqft: Optional[float] = Field(None, ge=0)
    total_area_sqft: Optional[float] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    stories: Optional[float] = Field(None, ge=0)
    construction_type: Optional[str] = None
    pool: Optional[bool] = None
    garage: Optional[bool] = None


class MarketSnapshot(BaseModel):
    """AVM and rent figures; only MLS sources fill this in"""
    avm_value: Optional[float] = None
    avm_low: Optional[float] = None
    avm_high: Optional[float] = None
    avm_confidence: Optional[float] = None
    current_rent: Optional[float] = None
    sell_score: Optional[float] = None
    listing_count: int = 0
    as_of: Optional[str] = None


class NormalizedAssessment(BaseModel):
    tax_year: int = Field(..., ge=1800, le=2200)
    just_value: Optional[float] = None
    assessed_value: Optional[float] = None
    taxable_value: Optional[float] = None
    land_value: Optional[float] = None
    improvement_value: Optional[float] = None
    exemptions: List[str] = Field(default_factory=list)
    ad_valorem_taxes: Optional[float] = None
    non_ad_valorem_taxes: Optional[float] = None


class NormalizedSale(BaseModel):
    """
    One sale. sale_key is derived from (sale_date, sale_price) so the same
    sale produces the same key on every ingestion.
    """
    sale_date: Optional[date] = None
    sale_price: Optional[float] = Field(None, ge=0)
    qualified: Optional[bool] = None
    deed_type: Optional[str] = None
    instrument: Optional[str] = None
    book_page: Optional[str] = None
    grantor: Optional[str] = None
    grantee: Optional[str] = None
    sale_key: str = ""

    @model_validator(mode="after")
    def fill_sale_key(self):
        if self.sale_date is None and self.sale_price is None:
            raise ValueError("A sale needs a date or a price")
        self.sale_key = compute_sale_key(self.sale_date, self.sale_price)
        return self


class FieldProvenance(BaseModel):
    """Where one group of fields came from"""
    source: str
    method: str
    source_url: Optional[str] = None
    timestamp: datetime
    confidence: float = Field(..., ge=0, le=1)


class NormalizedParcel(BaseModel):
    """
    Canonical parcel.

    Ensures:
    - parcel_id_norm is the canonical form of the raw id
    - assessments are ordered by tax year, most recent first
    - sales are ordered by date, most recent first (undated last)
    - confidence stays in [0, 1]
    """

    # Identity
    state_fips: str = Field(..., pattern=r"^\d{2}$")
    county_fips: str = Field(..., pattern=r"^\d{3}$")
    parcel_id_raw: Optional[str] = None
    parcel_id_norm: str = Field(..., min_length=1)
    alternate_ids: List[str] = Field(default_factory=list)

    situs_address: NormalizedAddress = Field(default_factory=NormalizedAddress)
    owner_name: Optional[str] = None

    land: Land = Field(default_factory=Land)
    improvements: Improvements = Field(default_factory=Improvements)
    market: Optional[MarketSnapshot] = None

    assessments: List[NormalizedAssessment] = Field(default_factory=list)
    sales: List[NormalizedSale] = Field(default_factory=list)

    provenance: Dict[str, FieldProvenance] = Field(default_factory=dict)
    confidence: float = Field(0.0, ge=0, le=1)

    @field_validator("parcel_id_norm", mode="before")
    @classmethod
    def canonical_parcel_id(cls, v):
        return normalize_parcel_id(v)

    @field_validator("assessments")
    @classmethod
    def order_assessments(cls, v):
        return sorted(v, key=lambda a: a.tax_year, reverse=True)

    @field_validator("sales")
    @classmethod
    def order_sales(cls, v):
        dated = sorted((s for s in v if s.sale_date), key=lambda s: s.sale_date, reverse=True)
        return dated + [s for s in v if not s.sale_date]

    @property
    def key(self) -> ParcelKey:
        return ParcelKey(self.state_fips, self.county_fips, self.parcel_id_norm)
