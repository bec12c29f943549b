"""
Manatee County Property Appraiser (manateepao.gov).

The portal renders parcel pages client-side, so both search and detail
pages are loaded through the browser capability. Parcel pages are keyed by
the ``parid`` query parameter; an address is turned into a parcel id by
submitting the search form.
"""

from typing import Optional, Sequence
from urllib.parse import quote
import logging

from core.config import settings
from core.exceptions import TargetNotFoundError
from core.hashing import compute_dom_signature
from core.parcel_id import extract_parcel_id_from_manatee_url, normalize_parcel_id
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
from ingestion.sources.assessor import normalize_assessor_record, state_and_county
from ingestion.sources.pao_html import (
    PaoPageParser,
    has_no_results,
    parse_search_results,
    pick_best_result,
    split_situs,
)
from models.base import FetchKind, PlatformFamily, SourceType
from schemas.ingestion import ResolveInput
from schemas.records import AssessorRecord
from schemas.source import RateLimitPolicy, RetryConfig, SourceConfig

logger = logging.getLogger(__name__)

BASE_URL = "https://www.manateepao.gov"
SEARCH_URL = f"{BASE_URL}/search/"
DETAIL_URL = f"{BASE_URL}/parcel/?parid={{parcel_id}}"

SEARCH_ADDRESS_FIELD = "#Address"
SEARCH_ZIP_FIELD = "#Zip"
SEARCH_SUBMIT = 'input[type="submit"].btn-success'
RESULT_LINKS = "a[href*='parid=']"

MANATEE_PAO_CONFIG = SourceConfig(
    source_key="fl-manatee-pa",
    name="Manatee County Property Appraiser",
    state_fips="12",
    county_fips="081",
    source_type=SourceType.ASSESSOR,
    platform_family=PlatformFamily.PLAYWRIGHT,
    base_url=BASE_URL,
    capabilities={
        "addressSearch": True,
        "parcelSearch": True,
        "ownerSearch": False,
        "assessmentHistory": True,
        "salesHistory": True,
        "owner": True,
        "improvements": True,
        "extraFeatures": True,
        "inspections": True,
    },
    rate_limit=RateLimitPolicy(rps=0.2, burst=2),
    retry=RetryConfig(max_attempts=3, backoff_seconds=[2, 5, 15]),
)


def detail_url(parcel_id: str) -> str:
    return DETAIL_URL.format(parcel_id=quote(parcel_id))


class ManateePaoAdapter(SourceAdapter):
    """Browser-driven adapter for the Manatee PAO portal."""

    parser_version = "manatee-pao-v1.0.0"
    method = "playwright"

    def __init__(
        self,
        config: SourceConfig = MANATEE_PAO_CONFIG,
        browser: Optional[BrowserDriver] = None,
        rate_limiter=None,
    ):
        super().__init__(config, rate_limiter=rate_limiter)
        self._browser = browser
        self._owns_browser = browser is None
        self.parser = PaoPageParser(parcel_id_from_url=extract_parcel_id_from_manatee_url)

    @property
    def browser(self) -> BrowserDriver:
        if self._browser is None:
            self._browser = PlaywrightBrowserDriver.from_settings()
        return self._browser

    async def close(self) -> None:
        if self._owns_browser and self._browser is not None:
            await self._browser.close()
            self._browser = None

    async def resolve(self, target: ResolveInput) -> Optional[TargetDescriptor]:
        if target.is_empty:
            return None

        parcel_id = normalize_parcel_id(target.parcel_id)
        if parcel_id:
            return TargetDescriptor(
                target_key=f"parid:{parcel_id}",
                url=detail_url(parcel_id),
                parcel_id_raw=target.parcel_id,
                address=target.address,
            )

        if not (target.address or "").strip():
            return None

        street, _, _, zip_code = split_situs(target.address)
        fields = {SEARCH_ADDRESS_FIELD: street or target.address}
        if zip_code:
            fields[SEARCH_ZIP_FIELD] = zip_code

        await self.throttle()
        capture = await self.browser.submit_form(
            SEARCH_URL,
            fields,
            submit=SEARCH_SUBMIT,
            nav_timeout=settings.NAV_TIMEOUT_SECONDS,
        )
        raise_if_blocked(capture, self.source_key)

        # a unique match redirects straight to the parcel page
        parcel_id = extract_parcel_id_from_manatee_url(capture.final_url)
        if parcel_id is None:
            if has_no_results(capture.html):
                logger.info(f"{self.source_key}: no results for {target.address!r}")
                return None
            best = pick_best_result(
                parse_search_results(capture.html, capture.final_url, RESULT_LINKS),
                target.address,
            )
            if best is None:
                return None
            parcel_id = extract_parcel_id_from_manatee_url(best.url)
            if parcel_id is None:
                return None

        return TargetDescriptor(
            target_key=f"parid:{parcel_id}",
            url=detail_url(parcel_id),
            parcel_id_raw=parcel_id,
            address=target.address,
        )

    async def fetch(self, target: TargetDescriptor, options: FetchOptions) -> FetchResult:
        await self.throttle()
        capture = await self.browser.navigate(target.url, nav_timeout=options.nav_timeout)
        raise_if_blocked(capture, self.source_key)

        if capture.status == 404 or (has_no_results(capture.html) and "owner" not in capture.html.lower()):
            raise TargetNotFoundError(
                f"Parcel page not found: {target.url}",
                context={"source_key": self.source_key, "url": target.url, "status_code": capture.status},
            )

        payload = RawPayload(
            url=capture.final_url or target.url,
            body=capture.html,
            kind=FetchKind.HTML,
            status=capture.status,
            metadata={"requested_url": target.url},
        )
        return FetchResult(payloads=[payload], session_reused=capture.session_reused)

    def extract(self, payloads: Sequence[RawPayload]) -> ExtractResult:
        if not payloads:
            return ExtractResult(record=AssessorRecord(), warnings=["no payloads"])
        primary = payloads[0]
        parsed = self.parser.parse(primary.body, primary.url)
        return ExtractResult(
            record=parsed.record,
            warnings=parsed.warnings,
            dom_signature=compute_dom_signature(parsed.labels),
        )

    def normalize(self, record: AssessorRecord, ctx: NormalizeContext) -> NormalizeResult:
        state_fips, county_fips = state_and_county(self.config, ctx.target)
        return normalize_assessor_record(record, ctx, state_fips, county_fips)
