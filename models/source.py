from sqlalchemy import Column, String, Enum, DateTime, Uuid, Index
from datetime import datetime
import uuid
from models.base import Base, JSONType, SourceType, PlatformFamily


class Source(Base):
    """
    A registered data provider.

    Created once via find-or-create by key and never mutated afterwards;
    every job, raw fetch and parse artifact points back to it.
    """
    __tablename__ = "sources"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_key = Column(String(100), nullable=False)
    name = Column(String(200), nullable=False)

    # Jurisdiction
    state_fips = Column(String(2), nullable=False)
    county_fips = Column(String(3), nullable=True)  # NULL for statewide sources

    source_type = Column(Enum(SourceType), nullable=False)
    platform_family = Column(Enum(PlatformFamily), nullable=False)
    base_url = Column(String(2048), nullable=False)

    capabilities = Column(JSONType, nullable=False, default=dict)
    rate_limit = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_sources_key", "source_key", unique=True),
    )
