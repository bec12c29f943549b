from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class SourceType(str, enum.Enum):
    """Kind of data provider"""
    ASSESSOR = "assessor"
    MLS = "mls"
    GIS = "gis"


class PlatformFamily(str, enum.Enum):
    """How a source is reached"""
    API = "api"
    PLAYWRIGHT = "playwright"
    STATIC_HTML = "static_html"


class TriggerOrigin(str, enum.Enum):
    """What started an ingestion run"""
    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULED = "scheduled"
    API = "api"


class RunStatus(str, enum.Enum):
    """Ingestion run status"""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class JobStatus(str, enum.Enum):
    """Ingestion job status"""
    PENDING = "pending"
    FETCHING = "fetching"
    PARSED = "parsed"
    NORMALIZED = "normalized"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.NORMALIZED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Forward-only: pending -> fetching -> parsed -> normalized, failed from any live state."""
        if self.is_terminal:
            return False
        if target is JobStatus.FAILED:
            return True
        return _JOB_ORDER.index(target) == _JOB_ORDER.index(self) + 1


_JOB_ORDER = [JobStatus.PENDING, JobStatus.FETCHING, JobStatus.PARSED, JobStatus.NORMALIZED]


class FetchKind(str, enum.Enum):
    """Shape of a captured response body"""
    HTML = "html"
    API = "api"
    JSON = "json"
