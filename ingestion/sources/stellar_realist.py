"""
StellarMLS Realist: MLS analytics (Sell Score, Real AVM, rental trends,
listing history) for an address.

Realist is a single-page app behind an MLS login. The adapter drives an
address search in a browser context seeded from a pre-authenticated
storage state and keeps every JSON response whose URL matches one of the
capture needles; extraction walks those JSON bodies and falls back to the
rendered page text. Logging in is never attempted: without a stored
session the browser driver raises ConfigMissingError.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence
import json
import re
import logging

from bs4 import BeautifulSoup

from core.config import settings
from core.exceptions import NormalizationError
from core.hashing import canonical_json, compute_dom_signature
from core.parcel_id import normalize_parcel_id
from ingestion.base import (
    ExtractResult,
    FetchOptions,
    FetchResult,
    NormalizeContext,
    NormalizeResult,
    RawPayload,
    SourceAdapter,
    TargetDescriptor,
)
from ingestion.browser import BrowserDriver, PlaywrightBrowserDriver, raise_if_blocked
from ingestion.confidence import ConfidenceTable
from ingestion.sources.pao_html import parse_money, parse_number, split_situs
from models.base import FetchKind, PlatformFamily, SourceType
from schemas.ingestion import ResolveInput
from schemas.parcel import FieldProvenance, MarketSnapshot, NormalizedAddress, NormalizedParcel
from schemas.records import Listing, MlsRecord, RealAvm, RentalPoint, RentalTrends, SellScore
from schemas.source import RateLimitPolicy, RetryConfig, SourceConfig

logger = logging.getLogger(__name__)

BASE_URL = "https://prd.realist.com"
ADDRESS_INPUT = (
    'input[placeholder*="Address"], input[aria-label*="Address"], '
    'input[name*="address"], input[type="search"]'
)
MAX_LISTINGS = 25

STELLAR_REALIST_CONFIG = SourceConfig(
    source_key="fl-stellar-realist",
    name="StellarMLS Realist",
    state_fips="12",
    county_fips=None,
    source_type=SourceType.MLS,
    platform_family=PlatformFamily.PLAYWRIGHT,
    base_url=BASE_URL,
    capabilities={
        "addressSearch": True,
        "parcelSearch": False,
        "avm": True,
        "rentals": True,
        "listings": True,
        "sellScore": True,
    },
    rate_limit=RateLimitPolicy(rps=0.1, burst=1),
    retry=RetryConfig(max_attempts=2, backoff_seconds=[5, 15]),
)

STELLAR_CONFIDENCE: ConfidenceTable[MlsRecord] = ConfidenceTable.of(
    ("matched_address", lambda r: bool(r.matched_address), 0.2),
    ("sell_score", lambda r: r.sell_score.score is not None, 0.2),
    ("real_avm", lambda r: r.real_avm.value is not None, 0.3),
    ("current_rent", lambda r: r.rental_trends.current_rent is not None, 0.1),
    ("listings", lambda r: len(r.listings) > 0, 0.2),
)

_PARCEL_KEYS = ("apn", "parcelid", "parcelnumber", "parcel_id")
_FIPS_KEYS = ("fips", "countyfips", "fipscode")

_DOM_PATTERNS = {
    "sell_score": re.compile(r"Sell\s*Score[^0-9]{0,20}(\d{1,3})", re.IGNORECASE),
    "avm_value": re.compile(r"Real\s*AVM[^\d$]{0,20}\$?([\d,]+)", re.IGNORECASE),
    "avm_confidence": re.compile(r"Confidence[^0-9]{0,20}(\d{1,3})%", re.IGNORECASE),
    "current_rent": re.compile(r"Rent(?:al)?\s*Trend[^\d$]{0,20}\$?([\d,]+)", re.IGNORECASE),
}


def _normalize_address_key(address: str) -> str:
    return re.sub(r"[^A-Z0-9]+", " ", address.upper()).strip()


class StellarRealistAdapter(SourceAdapter):
    """Browser-driven MLS adapter reusing a stored Realist session."""

    parser_version = "stellar-realist-v1.0.0"
    method = "playwright"

    def __init__(
        self,
        config: SourceConfig = STELLAR_REALIST_CONFIG,
        browser: Optional[BrowserDriver] = None,
        rate_limiter=None,
        capture_url_parts: Optional[Sequence[str]] = None,
    ):
        super().__init__(config, rate_limiter=rate_limiter)
        self._browser = browser
        self._owns_browser = browser is None
        self.capture_url_parts = list(capture_url_parts or settings.STELLAR_CAPTURE_URL_PARTS)

    @property
    def browser(self) -> BrowserDriver:
        if self._browser is None:
            self._browser = PlaywrightBrowserDriver.from_settings(
                storage_state_path=settings.STELLAR_STORAGE_STATE_PATH,
                require_storage_state=True,
            )
        return self._browser

    async def close(self) -> None:
        if self._owns_browser and self._browser is not None:
            await self._browser.close()
            self._browser = None

    async def resolve(self, target: ResolveInput) -> Optional[TargetDescriptor]:
        address = (target.address or "").strip()
        if not address:
            # Realist searches by address only
            return None
        return TargetDescriptor(
            target_key=f"address:{_normalize_address_key(address)}",
            url=BASE_URL,
            parcel_id_raw=target.parcel_id,
            address=address,
            county_fips=target.county_fips,
        )

    async def fetch(self, target: TargetDescriptor, options: FetchOptions) -> FetchResult:
        await self.throttle()
        capture = await self.browser.submit_form(
            target.url,
            {ADDRESS_INPUT: target.address},
            capture=self.capture_url_parts,
            nav_timeout=options.nav_timeout,
        )
        raise_if_blocked(capture, self.source_key)

        payloads = [
            RawPayload(
                url=capture.final_url or target.url,
                body=capture.html,
                kind=FetchKind.HTML,
                status=capture.status,
                metadata={"address_searched": target.address},
            )
        ]
        for response in capture.json_responses:
            payloads.append(
                RawPayload(
                    url=response.url,
                    body=canonical_json(response.body),
                    kind=FetchKind.JSON,
                    status=response.status,
                )
            )

        logger.info(
            f"{self.source_key}: captured {len(capture.json_responses)} JSON responses "
            f"(session reused: {capture.session_reused})"
        )
        return FetchResult(payloads=payloads, session_reused=capture.session_reused)

    def extract(self, payloads: Sequence[RawPayload]) -> ExtractResult:
        if not payloads:
            return ExtractResult(record=MlsRecord(), warnings=["no payloads"])

        warnings: List[str] = []
        labels: List[str] = []
        html_payload = next((p for p in payloads if p.kind == FetchKind.HTML), None)

        record = MlsRecord(
            address_searched=(html_payload.metadata.get("address_searched") if html_payload else None),
            source_url=html_payload.url if html_payload else payloads[0].url,
        )

        for payload in payloads:
            if payload.kind not in (FetchKind.JSON, FetchKind.API):
                continue
            try:
                body = json.loads(payload.body)
            except (ValueError, TypeError) as e:
                warnings.append(f"unreadable JSON from {payload.url}: {e}")
                continue
            _walk(body, lambda key, value: _pick(record, key, value, labels))

        if html_payload is not None:
            _fill_from_dom(record, html_payload.body, labels)

        if not record.matched_address:
            warnings.append("no matched address")
        if record.real_avm is None:
            warnings.append("no AVM")

        return ExtractResult(
            record=record,
            warnings=warnings,
            dom_signature=compute_dom_signature(labels),
        )

    def normalize(self, record: MlsRecord, ctx: NormalizeContext) -> NormalizeResult:
        target = ctx.target
        parcel_id_raw = record.parcel_id or (target.parcel_id_raw if target else None)
        county_fips = record.county_fips or (target.county_fips if target else None)

        missing = [
            name for name, value in (("parcel_id", normalize_parcel_id(parcel_id_raw)), ("county_fips", county_fips))
            if not value
        ]
        if missing:
            raise NormalizationError(
                "MLS record cannot be keyed to a parcel",
                context={"source_key": ctx.source_key, "missing": missing},
            )

        confidence = STELLAR_CONFIDENCE.score(record)
        address = record.matched_address or record.address_searched
        street, city, state, zip_code = split_situs(address)

        market = MarketSnapshot(
            avm_value=record.real_avm.value if record.real_avm else None,
            avm_low=record.real_avm.low if record.real_avm else None,
            avm_high=record.real_avm.high if record.real_avm else None,
            avm_confidence=record.real_avm.confidence if record.real_avm else None,
            current_rent=record.rental_trends.current_rent if record.rental_trends else None,
            sell_score=record.sell_score.score if record.sell_score else None,
            listing_count=len(record.listings),
            as_of=(record.real_avm.as_of if record.real_avm else None),
        )

        provenance = {
            group: FieldProvenance(
                source=ctx.source_key,
                method=ctx.method,
                source_url=ctx.source_url,
                timestamp=ctx.fetched_at,
                confidence=weight,
            )
            for group, weight in (("situs_address", 0.7), ("market", 0.8))
        }

        parcel = NormalizedParcel(
            state_fips=self.config.state_fips,
            county_fips=county_fips,
            parcel_id_raw=parcel_id_raw,
            parcel_id_norm=parcel_id_raw,
            situs_address=NormalizedAddress.build(street, city, state, zip_code),
            market=market,
            provenance=provenance,
            confidence=confidence,
        )
        return NormalizeResult(parcel=parcel, confidence=confidence)


# ============================================================================
# JSON walk
# ============================================================================

def _walk(value: Any, visit: Callable[[str, Any], None]) -> None:
    """Call ``visit(key, value)`` for every key of every nested object."""
    if isinstance(value, list):
        for item in value:
            _walk(item, visit)
    elif isinstance(value, dict):
        for key, child in value.items():
            visit(str(key), child)
            _walk(child, visit)


def _first(obj: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if obj.get(key) not in (None, ""):
            return obj[key]
    return None


def _num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return parse_money(str(value))


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _pick(record: MlsRecord, key: str, value: Any, labels: List[str]) -> None:
    lower = key.lower()

    if "sell" in lower and "score" in lower and isinstance(value, dict):
        labels.append("json:sellscore")
        score = record.sell_score or SellScore()
        if score.score is None:
            score.score = _num(_first(value, "score", "value"))
        score.indicator = score.indicator or _str(value.get("indicator"))
        score.as_of = score.as_of or _str(value.get("asOf"))
        record.sell_score = score

    if "avm" in lower and isinstance(value, dict):
        labels.append("json:avm")
        avm = record.real_avm or RealAvm()
        if avm.value is None:
            avm.value = _num(_first(value, "value", "avm"))
        if avm.low is None:
            avm.low = _num(_first(value, "low", "min"))
        if avm.high is None:
            avm.high = _num(_first(value, "high", "max"))
        if avm.confidence is None:
            avm.confidence = _num(_first(value, "confidence", "confidenceScore"))
        avm.confidence_label = avm.confidence_label or _str(value.get("confidenceLabel"))
        avm.as_of = avm.as_of or _str(value.get("asOf"))
        record.real_avm = avm

    if "rent" in lower and isinstance(value, dict):
        labels.append("json:rent")
        rental = record.rental_trends or RentalTrends()
        rental.summary = rental.summary or _str(value.get("summary"))
        if rental.current_rent is None:
            rental.current_rent = _num(_first(value, "currentRent", "rent"))
        if rental.yoy_change_pct is None:
            rental.yoy_change_pct = _num(_first(value, "yoyChangePct", "yoy"))
        series = value.get("series")
        if isinstance(series, list) and not rental.series:
            for point in series:
                if not isinstance(point, dict):
                    continue
                period, amount = _str(point.get("period")), _num(point.get("value"))
                if period and amount:
                    rental.series.append(RentalPoint(period=period, value=amount))
        record.rental_trends = rental

    if "listing" in lower and isinstance(value, list) and not record.listings:
        labels.append("json:listings")
        for item in value[:MAX_LISTINGS]:
            if not isinstance(item, dict):
                continue
            record.listings.append(
                Listing(
                    status=_str(item.get("status")),
                    list_price=_num(_first(item, "listPrice", "price")),
                    close_price=_num(_first(item, "closePrice", "soldPrice")),
                    list_date=_str(item.get("listDate")),
                    close_date=_str(item.get("closeDate")),
                    days_on_market=_num(item.get("daysOnMarket")),
                    mls_number=_str(item.get("mlsNumber")),
                    brokerage=_str(item.get("brokerage")),
                    agent=_str(item.get("agent")),
                )
            )

    if lower == "address" and _str(value) and not record.matched_address:
        record.matched_address = value.strip()

    if lower in _PARCEL_KEYS and not record.parcel_id:
        parcel_id = value if isinstance(value, str) else (str(value) if isinstance(value, int) else None)
        if parcel_id and parcel_id.strip():
            record.parcel_id = parcel_id.strip()

    if lower in _FIPS_KEYS and not record.county_fips:
        digits = re.sub(r"\D", "", str(value)) if isinstance(value, (str, int)) else ""
        if len(digits) in (3, 5):
            record.county_fips = digits[-3:]


def _fill_from_dom(record: MlsRecord, html: str, labels: List[str]) -> None:
    """Regex fallbacks over the rendered page text for figures the JSON lacked."""
    text = BeautifulSoup(html or "", "html.parser").get_text(" ", strip=True)
    if not text:
        return

    def find(name: str) -> Optional[float]:
        match = _DOM_PATTERNS[name].search(text)
        if match:
            labels.append(f"dom:{name}")
            return parse_number(match.group(1))
        return None

    if record.sell_score is None or record.sell_score.score is None:
        score = find("sell_score")
        if score is not None:
            record.sell_score = (record.sell_score or SellScore()).model_copy(update={"score": score})

    if record.real_avm is None or record.real_avm.value is None:
        value = find("avm_value")
        if value is not None:
            record.real_avm = (record.real_avm or RealAvm()).model_copy(update={"value": value})

    if record.real_avm is None or record.real_avm.confidence is None:
        confidence = find("avm_confidence")
        if confidence is not None:
            record.real_avm = (record.real_avm or RealAvm()).model_copy(update={"confidence": confidence})

    if record.rental_trends is None or record.rental_trends.current_rent is None:
        rent = find("current_rent")
        if rent is not None:
            record.rental_trends = (record.rental_trends or RentalTrends()).model_copy(
                update={"current_rent": rent}
            )
