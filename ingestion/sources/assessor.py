"""
Normalization shared by the county Property Appraiser adapters.
"""

from typing import Dict, List
import logging

from core.exceptions import NormalizationError
from core.parcel_id import normalize_parcel_id
from ingestion.base import NormalizeContext, NormalizeResult
from ingestion.confidence import ConfidenceTable
from ingestion.sources.pao_html import parse_date
from schemas.parcel import (
    FieldProvenance,
    Improvements,
    Land,
    NormalizedAddress,
    NormalizedAssessment,
    NormalizedParcel,
    NormalizedSale,
)
from schemas.records import AssessorRecord

logger = logging.getLogger(__name__)


ASSESSOR_CONFIDENCE: ConfidenceTable[AssessorRecord] = ConfidenceTable.of(
    ("parcel_id", lambda r: bool(r.parcel_id), 0.15),
    ("owner", lambda r: len(r.owner) > 2, 0.15),
    ("address", lambda r: len(r.address) > 5, 0.15),
    ("valuations", lambda r: len(r.valuations) > 0, 0.20),
    ("sales", lambda r: len(r.sales) > 0, 0.15),
    (
        "building",
        lambda r: any(
            v is not None
            for v in (r.building.bedrooms, r.building.bathrooms, r.building.living_area_sqft)
        ),
        0.10,
    ),
    ("extras", lambda r: bool(r.extra_features or r.inspections), 0.10),
)

# per field group
PROVENANCE_CONFIDENCE: Dict[str, float] = {
    "parcel_id": 1.0,
    "situs_address": 0.9,
    "owner_name": 0.9,
    "land": 0.8,
    "improvements": 0.8,
    "assessments": 0.9,
    "sales": 0.9,
}


def normalize_assessor_record(
    record: AssessorRecord,
    ctx: NormalizeContext,
    state_fips: str,
    county_fips: str,
) -> NormalizeResult:
    """
    Map an AssessorRecord to the canonical parcel.

    Raises:
        NormalizationError: record has no parcel id
    """
    parcel_id_raw = record.parcel_id or (ctx.target.parcel_id_raw if ctx.target else None)
    if not normalize_parcel_id(parcel_id_raw):
        raise NormalizationError(
            "Assessor record has no parcel id",
            context={"source_key": ctx.source_key, "source_url": ctx.source_url},
        )

    confidence = ASSESSOR_CONFIDENCE.score(record)
    sales = _normalize_sales(record)

    parcel = NormalizedParcel(
        state_fips=state_fips,
        county_fips=county_fips,
        parcel_id_raw=parcel_id_raw,
        parcel_id_norm=parcel_id_raw,
        situs_address=NormalizedAddress.build(
            record.address, record.city, record.state, record.zip_code
        ),
        owner_name=record.owner,
        land=Land(
            use_code=record.use_code,
            use_description=record.use_description or record.land.land_use,
            legal_description=record.legal_description,
            acreage=record.land.lot_size_acres,
            lot_size_sqft=record.land.lot_size_sqft,
            zoning=record.zoning,
        ),
        improvements=Improvements(
            year_built=record.building.year_built,
            effective_year_built=record.building.effective_year_built,
            living_area_sqft=record.building.living_area_sqft,
            total_area_sqft=record.building.total_area_sqft,
            bedrooms=record.building.bedrooms,
            bathrooms=record.building.bathrooms,
            stories=record.building.stories,
            construction_type=record.building.construction_type,
            pool=record.building.has_pool,
            garage=(record.building.garage_spaces > 0) if record.building.garage_spaces is not None else None,
        ),
        assessments=_normalize_assessments(record),
        sales=sales,
        provenance=_provenance(ctx),
        confidence=confidence,
    )
    return NormalizeResult(parcel=parcel, confidence=confidence)


def _normalize_assessments(record: AssessorRecord) -> List[NormalizedAssessment]:
    by_year: Dict[int, NormalizedAssessment] = {}
    for row in record.valuations:
        if row.year in by_year:
            continue
        by_year[row.year] = NormalizedAssessment(
            tax_year=row.year,
            just_value=row.just_total,
            assessed_value=row.assessed_total,
            taxable_value=row.taxable_total,
            land_value=row.just_land,
            improvement_value=row.just_building,
            ad_valorem_taxes=row.ad_valorem_taxes,
            non_ad_valorem_taxes=row.non_ad_valorem_taxes,
        )

    # exemptions are printed for the current roll only
    if by_year and record.exemptions:
        latest = max(by_year)
        by_year[latest].exemptions = list(record.exemptions)

    return list(by_year.values())


def _normalize_sales(record: AssessorRecord) -> List[NormalizedSale]:
    sales: Dict[str, NormalizedSale] = {}
    for row in record.sales:
        sale_date = parse_date(row.date)
        price = row.price if row.price is not None and row.price >= 0 else None
        if sale_date is None and price is None:
            logger.debug(f"Dropping sale without date or price: {row!r}")
            continue
        sale = NormalizedSale(
            sale_date=sale_date,
            sale_price=price,
            qualified=row.qualified,
            deed_type=row.deed_type,
            instrument=row.instrument_number,
            book_page=row.book_page,
            grantor=row.grantor,
            grantee=row.grantee,
        )
        sales.setdefault(sale.sale_key, sale)
    return list(sales.values())


def _provenance(ctx: NormalizeContext) -> Dict[str, FieldProvenance]:
    return {
        group: FieldProvenance(
            source=ctx.source_key,
            method=ctx.method,
            source_url=ctx.source_url,
            timestamp=ctx.fetched_at,
            confidence=weight,
        )
        for group, weight in PROVENANCE_CONFIDENCE.items()
    }


def state_and_county(config, target=None) -> tuple:
    """(state_fips, county_fips) for a county-scoped source."""
    county = config.county_fips or (target.county_fips if target else None)
    if not county:
        raise NormalizationError(
            f"{config.source_key} has no county FIPS",
            context={"source_key": config.source_key},
        )
    return config.state_fips, county
