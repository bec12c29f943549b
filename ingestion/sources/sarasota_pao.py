"""
Sarasota County Property Appraiser (sc-pa.com).

Plain server-rendered HTML: search and detail pages are fetched with httpx
and parsed with the shared PAO parser. HTTP failures are classified here:

    404                         -> TargetNotFoundError
    429, 5xx, timeouts, network -> TransientFetchError
    other 4xx                   -> FatalFetchError
"""

from typing import Optional, Sequence
import logging

import httpx

from core.config import settings
from core.exceptions import FatalFetchError, TargetNotFoundError, TransientFetchError
from core.hashing import compute_dom_signature
from core.parcel_id import extract_parcel_id_from_sarasota_url, normalize_numeric_parcel_id
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
from ingestion.browser import detect_blocking
from ingestion.sources.assessor import normalize_assessor_record, state_and_county
from ingestion.sources.pao_html import (
    PaoPageParser,
    has_no_results,
    parse_search_results,
    pick_best_result,
)
from models.base import FetchKind, PlatformFamily, SourceType
from schemas.ingestion import ResolveInput
from schemas.records import AssessorRecord
from schemas.source import RateLimitPolicy, RetryConfig, SourceConfig

logger = logging.getLogger(__name__)

BASE_URL = "https://www.sc-pa.com"
SEARCH_URL = f"{BASE_URL}/propertysearch"
DETAIL_URL = f"{BASE_URL}/propertysearch/parcel/details/{{parcel_id}}"

SEARCH_ADDRESS_FIELD = "AddressKeywords"
RESULT_LINKS = "table tbody tr a[href*='/parcel']"

SARASOTA_PAO_CONFIG = SourceConfig(
    source_key="fl-sarasota-pa",
    name="Sarasota County Property Appraiser",
    state_fips="12",
    county_fips="115",
    source_type=SourceType.ASSESSOR,
    platform_family=PlatformFamily.STATIC_HTML,
    base_url=BASE_URL,
    capabilities={
        "addressSearch": True,
        "parcelSearch": True,
        "ownerSearch": False,
        "assessmentHistory": True,
        "salesHistory": True,
        "owner": True,
        "improvements": True,
    },
    rate_limit=RateLimitPolicy(rps=0.5, burst=2),
    retry=RetryConfig(max_attempts=3, backoff_seconds=[2, 5, 15]),
)


def detail_url(parcel_id: str) -> str:
    return DETAIL_URL.format(parcel_id=parcel_id)


class SarasotaPaoAdapter(SourceAdapter):
    """
    httpx-driven adapter for the Sarasota PAO portal.

    Args:
        config: Source configuration
        client: Shared httpx.AsyncClient; one is created on first use if omitted
        rate_limiter: Override for the shared per-source limiter
    """

    parser_version = "sarasota-pao-v1.0.0"
    method = "http"

    def __init__(
        self,
        config: SourceConfig = SARASOTA_PAO_CONFIG,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter=None,
    ):
        super().__init__(config, rate_limiter=rate_limiter)
        self._client = client
        self._owns_client = client is None
        self.parser = PaoPageParser(parcel_id_from_url=extract_parcel_id_from_sarasota_url)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.FETCH_TIMEOUT_SECONDS,
                follow_redirects=True,
                headers={"User-Agent": settings.HTTP_USER_AGENT},
            )
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        """One throttled request with status classification."""
        await self.throttle()
        try:
            response = await self.client.request(
                method,
                url,
                timeout=timeout or settings.FETCH_TIMEOUT_SECONDS,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise TransientFetchError(
                f"Request timeout: {url}",
                context={"url": url, "timeout": timeout},
                original_exception=e,
            )
        except httpx.TransportError as e:
            raise TransientFetchError(
                f"Network error: {url}",
                context={"url": url},
                original_exception=e,
            )

        status = response.status_code
        if status == 404:
            raise TargetNotFoundError(
                f"Resource not found: {url}",
                context={"source_key": self.source_key, "url": url, "status_code": 404},
            )
        if status == 429 or status >= 500:
            raise TransientFetchError(
                f"{self.source_key} returned {status}",
                context={"url": url, "status_code": status, "retry_after": response.headers.get("Retry-After")},
            )
        if status >= 400:
            raise FatalFetchError(
                f"{self.source_key} returned {status}",
                context={"url": url, "status_code": status, "response_body": response.text[:500]},
            )

        blocked = detect_blocking(response.text)
        if blocked:
            reason, transient = blocked
            error_cls = TransientFetchError if transient else FatalFetchError
            raise error_cls(
                f"{self.source_key} blocked the request: {reason}",
                context={"source_key": self.source_key, "url": url},
            )
        return response

    async def resolve(self, target: ResolveInput) -> Optional[TargetDescriptor]:
        if target.is_empty:
            return None

        parcel_id = normalize_numeric_parcel_id(target.parcel_id)
        if parcel_id:
            return TargetDescriptor(
                target_key=f"parcel:{parcel_id}",
                url=detail_url(parcel_id),
                parcel_id_raw=target.parcel_id,
                address=target.address,
            )

        if not (target.address or "").strip():
            return None

        response = await self._request(
            "POST",
            SEARCH_URL,
            data={SEARCH_ADDRESS_FIELD: target.address.strip()},
        )
        final_url = str(response.url)

        parcel_id = extract_parcel_id_from_sarasota_url(final_url)
        if parcel_id is None:
            if has_no_results(response.text):
                logger.info(f"{self.source_key}: no results for {target.address!r}")
                return None
            best = pick_best_result(
                parse_search_results(response.text, final_url, RESULT_LINKS),
                target.address,
            )
            if best is None:
                return None
            parcel_id = extract_parcel_id_from_sarasota_url(best.url)
            if parcel_id is None:
                return None

        return TargetDescriptor(
            target_key=f"parcel:{parcel_id}",
            url=detail_url(parcel_id),
            parcel_id_raw=parcel_id,
            address=target.address,
        )

    async def fetch(self, target: TargetDescriptor, options: FetchOptions) -> FetchResult:
        response = await self._request("GET", target.url, timeout=options.timeout)
        payload = RawPayload(
            url=str(response.url),
            body=response.text,
            kind=FetchKind.HTML,
            status=response.status_code,
            metadata={"content_type": response.headers.get("content-type")},
        )
        return FetchResult(payloads=[payload], session_reused=False)

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
