"""
Pydantic schemas describing registered sources
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from models.base import SourceType, PlatformFamily


class RateLimitPolicy(BaseModel):
    """Token-bucket policy: sustained requests per second plus burst size"""
    rps: float = Field(1.0, gt=0)
    burst: int = Field(1, ge=1)


class RetryConfig(BaseModel):
    """
    Per-source retry settings.

    backoff_seconds, when given, is used as an explicit delay schedule
    (delay before retry N is backoff_seconds[N-1], last value repeated).
    """
    max_attempts: int = Field(3, ge=1)
    backoff_seconds: List[float] = Field(default_factory=list)

    @field_validator("backoff_seconds")
    @classmethod
    def non_negative_delays(cls, v):
        if any(delay < 0 for delay in v):
            raise ValueError("backoff delays must be non-negative")
        return v


class SourceConfig(BaseModel):
    """Static description of a data provider, as registered at startup"""
    source_key: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    state_fips: str = Field(..., pattern=r"^\d{2}$")
    county_fips: Optional[str] = Field(None, pattern=r"^\d{3}$")
    source_type: SourceType
    platform_family: PlatformFamily
    base_url: str
    capabilities: Dict[str, bool] = Field(default_factory=dict)
    rate_limit: RateLimitPolicy = Field(default_factory=RateLimitPolicy)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    class Config:
        frozen = True


class SourceSummary(BaseModel):
    """Public view of a registered source"""
    source_key: str
    name: str
    state_fips: str
    county_fips: Optional[str]
    source_type: SourceType
    platform_family: PlatformFamily
    base_url: str
    capabilities: Dict[str, bool]

    class Config:
        use_enum_values = True

    @classmethod
    def from_config(cls, config: SourceConfig) -> "SourceSummary":
        return cls(
            source_key=config.source_key,
            name=config.name,
            state_fips=config.state_fips,
            county_fips=config.county_fips,
            source_type=config.source_type,
            platform_family=config.platform_family,
            base_url=config.base_url,
            capabilities=dict(config.capabilities),
        )
