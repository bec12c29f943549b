from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Date, DateTime, Text, Uuid,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType


class Parcel(Base):
    """
    Canonical parcel keyed by (state_fips, county_fips, parcel_id_norm).

    Design Decisions:
    - Upserted by key in a single INSERT ... ON CONFLICT statement
    - Land, improvements and market snapshot kept as JSON documents
    - canonical_fetch_id points at the RawFetch the current values came from
    """
    __tablename__ = "parcels"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Identity
    state_fips = Column(String(2), nullable=False)
    county_fips = Column(String(3), nullable=False)
    parcel_id_raw = Column(String(100), nullable=True)
    parcel_id_norm = Column(String(100), nullable=False)
    alternate_ids = Column(JSONType, nullable=False, default=list)

    # Situs address
    situs_address_raw = Column(Text, nullable=True)
    situs_address = Column(JSONType, nullable=False, default=dict)
    normalized_address = Column(String(500), nullable=True, index=True)

    owner_name = Column(String(500), nullable=True)

    land = Column(JSONType, nullable=False, default=dict)
    improvements = Column(JSONType, nullable=False, default=dict)
    market = Column(JSONType, nullable=False, default=dict)

    confidence = Column(Float, nullable=False, default=0.0)
    provenance = Column(JSONType, nullable=False, default=dict)

    # Traceability
    canonical_source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=True)
    canonical_fetch_id = Column(Uuid(as_uuid=True), ForeignKey("raw_fetches.id"), nullable=True)
    last_run_id = Column(Uuid(as_uuid=True), ForeignKey("ingestion_runs.id"), nullable=True)

    last_seen_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    assessments = relationship(
        "ParcelAssessment",
        back_populates="parcel",
        order_by="ParcelAssessment.tax_year.desc()",
        cascade="all, delete-orphan",
    )
    sales = relationship(
        "ParcelSale",
        back_populates="parcel",
        order_by="ParcelSale.sale_date.desc()",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("state_fips", "county_fips", "parcel_id_norm", name="uq_parcels_key"),
    )


class ParcelAssessment(Base):
    """Year-indexed valuation; one row per (parcel, tax year)"""
    __tablename__ = "parcel_assessments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parcel_id = Column(Uuid(as_uuid=True), ForeignKey("parcels.id", ondelete="CASCADE"), nullable=False)
    tax_year = Column(Integer, nullable=False, index=True)

    just_value = Column(Float, nullable=True)
    assessed_value = Column(Float, nullable=True)
    taxable_value = Column(Float, nullable=True)
    land_value = Column(Float, nullable=True)
    improvement_value = Column(Float, nullable=True)
    exemptions = Column(JSONType, nullable=False, default=list)
    ad_valorem_taxes = Column(Float, nullable=True)
    non_ad_valorem_taxes = Column(Float, nullable=True)

    source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=True)
    fetch_id = Column(Uuid(as_uuid=True), ForeignKey("raw_fetches.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    parcel = relationship("Parcel", back_populates="assessments")

    __table_args__ = (
        UniqueConstraint("parcel_id", "tax_year", name="uq_parcel_assessments_year"),
    )


class ParcelSale(Base):
    """
    Sale history entry.

    sale_key is the SHA-256 of (date, price); the same sale seen again on a
    later ingestion is never inserted twice.
    """
    __tablename__ = "parcel_sales"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parcel_id = Column(Uuid(as_uuid=True), ForeignKey("parcels.id", ondelete="CASCADE"), nullable=False)

    sale_date = Column(Date, nullable=True)
    sale_price = Column(Float, nullable=True)
    qualified = Column(Boolean, nullable=True)
    deed_type = Column(String(50), nullable=True)
    instrument = Column(String(100), nullable=True)
    book_page = Column(String(100), nullable=True)
    grantor = Column(String(500), nullable=True)
    grantee = Column(String(500), nullable=True)

    sale_key = Column(String(64), nullable=False)

    source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=True)
    fetch_id = Column(Uuid(as_uuid=True), ForeignKey("raw_fetches.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    parcel = relationship("Parcel", back_populates="sales")

    __table_args__ = (
        UniqueConstraint("parcel_id", "sale_key", name="uq_parcel_sales_key"),
        Index("idx_parcel_sales_date", "sale_date"),
    )
