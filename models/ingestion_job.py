from sqlalchemy import Column, String, Enum, DateTime, Integer, Text, Uuid, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType, JobStatus


class IngestionJob(Base):
    """
    One attempt to ingest one target from one source within a run.

    Status only moves forward (pending -> fetching -> parsed -> normalized),
    with failed reachable from any live state. status_history keeps every
    status the job has taken, in order.
    """
    __tablename__ = "ingestion_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(Uuid(as_uuid=True), ForeignKey("ingestion_runs.id"), nullable=False, index=True)
    source_id = Column(Uuid(as_uuid=True), ForeignKey("sources.id"), nullable=False, index=True)

    input = Column(JSONType, nullable=False, default=dict)
    target_key = Column(String(512), nullable=True, index=True)

    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True)
    status_history = Column(JSONType, nullable=False, default=list)
    attempts = Column(Integer, nullable=False, default=0)
    # RawFetch ids the job consumed, primary first; includes reused fetches
    fetch_ids = Column(JSONType, nullable=False, default=list)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    run = relationship("IngestionRun", back_populates="jobs")
    raw_fetches = relationship("RawFetch", back_populates="job", order_by="RawFetch.fetched_at")
    parse_artifacts = relationship("ParseArtifact", back_populates="job", order_by="ParseArtifact.created_at")

    __table_args__ = (
        Index("idx_ingestion_job_run_source", "run_id", "source_id"),
    )
