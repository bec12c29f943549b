from sqlalchemy import Column, String, Enum, DateTime, Text, Uuid, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JSONType, RunStatus, TriggerOrigin


class IngestionRun(Base):
    """
    One logical ingestion session; may contain several jobs.

    Purpose:
    - Audit trail of every ingestion
    - Per-step timing and upsert counters (stats)
    - Error capture for failed runs
    """
    __tablename__ = "ingestion_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    triggered_by = Column(Enum(TriggerOrigin), nullable=False, default=TriggerOrigin.MANUAL)
    purpose = Column(String(100), nullable=True)

    status = Column(Enum(RunStatus), nullable=False, default=RunStatus.RUNNING, index=True)
    stats = Column(JSONType, nullable=False, default=dict)
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)

    # Relationships
    jobs = relationship("IngestionJob", back_populates="run", order_by="IngestionJob.created_at")

    __table_args__ = (
        Index("idx_ingestion_run_status", "status", "created_at"),
    )
