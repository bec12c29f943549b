"""
Pydantic schemas for data validation and serialization.

This package defines the typed contracts that flow through the ingestion
pipeline and the HTTP surface:

Schemas:
    source: SourceConfig, RateLimitPolicy, RetryConfig, SourceSummary
    records: Structured records (AssessorRecord, MlsRecord) behind a
        discriminated union keyed on ``kind``
    parcel: The canonical NormalizedParcel with its assessments and sales
    ingestion: ResolveInput, IngestionResult, ProvenanceEnvelope
    api: API endpoint request/response schemas

Usage:
    from schemas.parcel import NormalizedParcel, NormalizedAddress
    from schemas.records import AssessorRecord, record_from_payload
    from schemas.ingestion import IngestionStatus, ResolveInput

Example:
    record = record_from_payload({"kind": "assessor", "parcel_id": "0123-45"})
    assert isinstance(record, AssessorRecord)

    address = NormalizedAddress.build("123 Main St", "Sarasota", None, "34236")
    assert address.normalized_full == "123 MAIN ST, SARASOTA, 34236"

Validation:
    - parcel ids are normalized on the canonical model
    - assessments and sales are ordered most recent first
    - sale keys are derived from (date, price)
    - confidence is bounded to [0, 1]
"""

__all__ = [
    "SourceConfig",
    "SourceSummary",
    "RateLimitPolicy",
    "RetryConfig",
    "AssessorRecord",
    "MlsRecord",
    "StructuredRecord",
    "record_from_payload",
    "NormalizedParcel",
    "NormalizedAddress",
    "NormalizedAssessment",
    "NormalizedSale",
    "IngestionStatus",
    "IngestionResult",
    "ProvenanceEnvelope",
    "ResolveInput",
]
