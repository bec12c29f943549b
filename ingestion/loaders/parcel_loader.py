"""
Load canonical parcels with upsert logic (idempotency)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
import uuid
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import UpsertError
from ingestion.loaders.dialect import dialect_insert, merge_object, union_array
from models import Parcel, ParcelAssessment, ParcelSale
from schemas.parcel import NormalizedParcel

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    parcel_id: UUID
    created: bool
    assessments_upserted: int
    sales_inserted: int
    sales_skipped: int

    def to_stats(self) -> Dict[str, Any]:
        return {
            "parcel_created": self.created,
            "assessments_upserted": self.assessments_upserted,
            "sales_inserted": self.sales_inserted,
            "sales_skipped": self.sales_skipped,
        }


def _is_empty(document: Dict[str, Any]) -> bool:
    return all(value in (None, [], {}, "") for value in document.values())


class ParcelLoader:
    """
    Upsert NormalizedParcel rows.

    Ensures:
    - One parcel row per (state_fips, county_fips, parcel_id_norm), via a
      single INSERT ... ON CONFLICT DO UPDATE
    - Assessments replaced per (parcel, tax_year)
    - Sales inserted only when their sale_key is new
    - Fields the incoming source did not populate keep their stored values
    - Parcel, assessments and sales commit together or not at all
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def upsert(
        self,
        parcel: NormalizedParcel,
        *,
        source_id: Optional[UUID] = None,
        fetch_id: Optional[UUID] = None,
        run_id: Optional[UUID] = None,
    ) -> UpsertResult:
        """
        Upsert one parcel with its assessments and sales in one transaction.

        Raises:
            UpsertError: any database failure; the transaction is rolled back
        """
        try:
            result = await self._upsert(parcel, source_id, fetch_id, run_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise UpsertError(
                f"Failed to upsert parcel {parcel.key}",
                context={"parcel_key": str(parcel.key), "table_name": "parcels"},
                original_exception=e,
            )

        logger.info(
            f"Upserted parcel {parcel.key} ({'created' if result.created else 'updated'}): "
            f"{result.assessments_upserted} assessments, {result.sales_inserted} new sales"
        )
        return result

    async def _upsert(self, parcel, source_id, fetch_id, run_id) -> UpsertResult:
        now = datetime.utcnow()
        new_id = uuid.uuid4()

        situs = parcel.situs_address.model_dump(mode="json")
        land = parcel.land.model_dump(mode="json")
        improvements = parcel.improvements.model_dump(mode="json")
        market = parcel.market.model_dump(mode="json") if parcel.market else {}
        provenance = {group: p.model_dump(mode="json") for group, p in parcel.provenance.items()}
        alternate_ids = sorted(set(parcel.alternate_ids))

        values = {
            "id": new_id,
            "state_fips": parcel.state_fips,
            "county_fips": parcel.county_fips,
            "parcel_id_raw": parcel.parcel_id_raw,
            "parcel_id_norm": parcel.parcel_id_norm,
            "alternate_ids": alternate_ids,
            "situs_address_raw": parcel.situs_address.raw,
            "situs_address": situs,
            "normalized_address": parcel.situs_address.normalized_full or None,
            "owner_name": parcel.owner_name,
            "land": land,
            "improvements": improvements,
            "market": market,
            "confidence": parcel.confidence,
            "provenance": provenance,
            "canonical_source_id": source_id,
            "canonical_fetch_id": fetch_id,
            "last_run_id": run_id,
            "last_seen_at": now,
            "created_at": now,
            "updated_at": now,
        }

        stmt = dialect_insert(self.db, Parcel).values(**values)
        excluded = stmt.excluded
        # provenance and alternate ids merge with what is stored, in SQL
        set_ = {
            "parcel_id_raw": excluded.parcel_id_raw,
            "alternate_ids": union_array(self.db, Parcel, "alternate_ids"),
            "confidence": excluded.confidence,
            "provenance": merge_object(self.db, Parcel.__table__.c.provenance, excluded.provenance),
            "canonical_source_id": excluded.canonical_source_id,
            "canonical_fetch_id": excluded.canonical_fetch_id,
            "last_run_id": excluded.last_run_id,
            "last_seen_at": excluded.last_seen_at,
            "updated_at": excluded.updated_at,
        }
        # a source that did not see a field group leaves the stored one alone
        if parcel.situs_address.normalized_full:
            set_["situs_address_raw"] = excluded.situs_address_raw
            set_["situs_address"] = excluded.situs_address
            set_["normalized_address"] = excluded.normalized_address
        if parcel.owner_name:
            set_["owner_name"] = excluded.owner_name
        if not _is_empty(land):
            set_["land"] = excluded.land
        if not _is_empty(improvements):
            set_["improvements"] = excluded.improvements
        if market:
            set_["market"] = excluded.market

        stmt = stmt.on_conflict_do_update(
            index_elements=["state_fips", "county_fips", "parcel_id_norm"],
            set_=set_,
        ).returning(Parcel.id)
        parcel_id = (await self.db.execute(stmt)).scalar_one()
        created = parcel_id == new_id

        assessments = 0
        for assessment in parcel.assessments:
            await self._upsert_assessment(parcel_id, assessment, source_id, fetch_id, now)
            assessments += 1

        inserted = 0
        for sale in parcel.sales:
            if await self._insert_sale(parcel_id, sale, source_id, fetch_id, now):
                inserted += 1

        return UpsertResult(
            parcel_id=parcel_id,
            created=created,
            assessments_upserted=assessments,
            sales_inserted=inserted,
            sales_skipped=len(parcel.sales) - inserted,
        )

    async def _upsert_assessment(self, parcel_id, assessment, source_id, fetch_id, now) -> None:
        stmt = dialect_insert(self.db, ParcelAssessment).values(
            id=uuid.uuid4(),
            parcel_id=parcel_id,
            tax_year=assessment.tax_year,
            just_value=assessment.just_value,
            assessed_value=assessment.assessed_value,
            taxable_value=assessment.taxable_value,
            land_value=assessment.land_value,
            improvement_value=assessment.improvement_value,
            exemptions=list(assessment.exemptions),
            ad_valorem_taxes=assessment.ad_valorem_taxes,
            non_ad_valorem_taxes=assessment.non_ad_valorem_taxes,
            source_id=source_id,
            fetch_id=fetch_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["parcel_id", "tax_year"],
            set_={
                "just_value": stmt.excluded.just_value,
                "assessed_value": stmt.excluded.assessed_value,
                "taxable_value": stmt.excluded.taxable_value,
                "land_value": stmt.excluded.land_value,
                "improvement_value": stmt.excluded.improvement_value,
                "exemptions": stmt.excluded.exemptions,
                "ad_valorem_taxes": stmt.excluded.ad_valorem_taxes,
                "non_ad_valorem_taxes": stmt.excluded.non_ad_valorem_taxes,
                "source_id": stmt.excluded.source_id,
                "fetch_id": stmt.excluded.fetch_id,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

    async def _insert_sale(self, parcel_id, sale, source_id, fetch_id, now) -> bool:
        """True when the sale was new."""
        stmt = dialect_insert(self.db, ParcelSale).values(
            id=uuid.uuid4(),
            parcel_id=parcel_id,
            sale_date=sale.sale_date,
            sale_price=sale.sale_price,
            qualified=sale.qualified,
            deed_type=sale.deed_type,
            instrument=sale.instrument,
            book_page=sale.book_page,
            grantor=sale.grantor,
            grantee=sale.grantee,
            sale_key=sale.sale_key,
            source_id=source_id,
            fetch_id=fetch_id,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["parcel_id", "sale_key"]).returning(ParcelSale.id)
        result = await self.db.execute(stmt)
        return result.first() is not None
