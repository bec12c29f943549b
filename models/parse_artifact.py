from sqlalchemy import Column, String, DateTime, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType


class ParseArtifact(Base):
    """
    Structured, pre-canonical extraction of a job's raw fetches.

    The same parser_version over the same raw bodies must produce the same
    content_signature; dom_signature tracks the page structure the parser saw.
    """
    __tablename__ = "parse_artifacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("ingestion_jobs.id"), nullable=True, index=True)
    source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=False, index=True)
    fetch_id = Column(Uuid(as_uuid=True), ForeignKey("raw_fetches.id"), nullable=True, index=True)

    parser_version = Column(String(100), nullable=False)
    content_signature = Column(String(64), nullable=False)
    dom_signature = Column(String(64), nullable=True)

    extracted = Column(JSONType, nullable=False, default=dict)
    warnings = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    job = relationship("IngestionJob", back_populates="parse_artifacts")

    __table_args__ = (
        Index("idx_parse_artifact_fetch_version", "fetch_id", "parser_version"),
    )
