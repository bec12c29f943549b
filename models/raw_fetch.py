from sqlalchemy import Column, String, Enum, Integer, Text, DateTime, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType, FetchKind


class RawFetch(Base):
    """
    Immutable snapshot of one network or browser response.

    Purpose:
    - Immutable audit trail
    - Re-parsing without re-fetching
    - Dedup by content hash per (source, target)

    Design Decisions:
    - Body kept verbatim as text; JSON payloads are stored serialized
    - content_hash is the SHA-256 of the body
    - Write-once: nothing in the normal flow updates or deletes rows
    """
    __tablename__ = "raw_fetches"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("ingestion_runs.id"), nullable=False, index=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("ingestion_jobs.id"), nullable=True, index=True)
    source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=False, index=True)
    target_key = Column(String(512), nullable=False)

    # Request / response
    request_url = Column(String(2048), nullable=False)
    request_method = Column(String(10), nullable=False, default="GET")
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    kind = Column(Enum(FetchKind), nullable=False, default=FetchKind.HTML)
    fetch_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    content_hash = Column(String(64), nullable=False)
    fetched_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    job = relationship("IngestionJob", back_populates="raw_fetches")

    __table_args__ = (
        Index("idx_raw_fetch_dedup", "source_id", "target_key", "content_hash"),
    )
