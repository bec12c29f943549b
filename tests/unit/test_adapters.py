"""
Unit tests for the source adapters: resolve, fetch, extract and normalize
"""

from datetime import date, datetime
import json

import httpx
import pytest
import pytest_asyncio

from core.exceptions import (
    FatalFetchError,
    NormalizationError,
    TargetNotFoundError,
    TransientFetchError,
)
from ingestion.base import FetchOptions, NormalizeContext, RawPayload, TargetDescriptor
from ingestion.browser import CapturedResponse, PageCapture
from ingestion.rate_limit import RateLimiter
from ingestion.sources.assessor import normalize_assessor_record
from ingestion.sources.manatee_pao import ManateePaoAdapter, detail_url
from ingestion.sources.sarasota_pao import SarasotaPaoAdapter
from ingestion.sources.sarasota_pao import detail_url as sarasota_detail_url
from ingestion.sources.stellar_realist import StellarRealistAdapter
from models.base import FetchKind
from schemas.ingestion import ResolveInput
from schemas.records import AssessorRecord, MlsRecord, SaleRow

MANATEE_PARCEL_ID = "5788100009"
SARASOTA_PARCEL_ID = "0123456789"

FETCHED_AT = datetime(2024, 5, 1, 12, 0, 0)


def limiter():
    return RateLimiter(rps=1000, burst=100)


def context(source_key="fl-manatee-pa", target=None, url=None):
    return NormalizeContext(
        source_key=source_key,
        method="playwright",
        fetched_at=FETCHED_AT,
        source_url=url,
        target=target,
    )


# ============================================================================
# Assessor normalization
# ============================================================================

class TestAssessorNormalization:

    def test_record_without_parcel_id_rejected(self):
        with pytest.raises(NormalizationError):
            normalize_assessor_record(AssessorRecord(owner="SMITH JOHN"), context(), "12", "081")

    def test_parcel_id_taken_from_target(self):
        target = TargetDescriptor(target_key="parid:5788100009", url="", parcel_id_raw="5788-1000-09")
        result = normalize_assessor_record(AssessorRecord(owner="SMITH JOHN"), context(target=target), "12", "081")

        assert str(result.parcel.key) == "12-081-5788100009"

    def test_unusable_and_duplicate_sales_dropped(self):
        record = AssessorRecord(
            parcel_id="5788100009",
            sales=[
                SaleRow(date="06/15/2019", price=325000),
                SaleRow(date="2019-06-15", price=325000, deed_type="WD"),
                SaleRow(date=None, price=-10),
                SaleRow(date="not a date", price=None),
            ],
        )
        result = normalize_assessor_record(record, context(), "12", "081")

        assert len(result.parcel.sales) == 1
        assert result.parcel.sales[0].sale_date == date(2019, 6, 15)

    def test_provenance_per_field_group(self):
        result = normalize_assessor_record(AssessorRecord(parcel_id="5788100009"), context(url="https://x"), "12", "081")

        provenance = result.parcel.provenance
        assert provenance["parcel_id"].confidence == 1.0
        assert provenance["sales"].source == "fl-manatee-pa"
        assert provenance["owner_name"].source_url == "https://x"
        assert provenance["land"].timestamp == FETCHED_AT


# ============================================================================
# Manatee
# ============================================================================

class TestManateeAdapter:

    @pytest.fixture
    def manatee(self, make_browser):
        def factory(**browser_kwargs):
            browser = make_browser(**browser_kwargs)
            return ManateePaoAdapter(browser=browser, rate_limiter=limiter()), browser
        return factory

    @pytest.mark.asyncio
    async def test_resolve_by_parcel_id_skips_search(self, manatee):
        adapter, browser = manatee()

        target = await adapter.resolve(ResolveInput(parcel_id="5788-1000-09"))

        assert target.target_key == "parid:5788100009"
        assert target.url == detail_url(MANATEE_PARCEL_ID)
        assert browser.submissions == []
        assert browser.navigations == []

    @pytest.mark.asyncio
    async def test_resolve_address_follows_redirect(self, manatee, parcel_page_html):
        search = PageCapture(
            url="https://www.manateepao.gov/search/",
            final_url=detail_url(MANATEE_PARCEL_ID),
            status=200,
            html=parcel_page_html,
        )
        adapter, browser = manatee(search=search)

        target = await adapter.resolve(ResolveInput(address="1234 PALM AVE, BRADENTON, FL 34205"))

        assert target.target_key == "parid:5788100009"
        assert browser.submissions[0][1] == {"#Address": "1234 PALM AVE", "#Zip": "34205"}

    @pytest.mark.asyncio
    async def test_resolve_address_without_results(self, manatee):
        adapter, _ = manatee()
        assert await adapter.resolve(ResolveInput(address="1 NOWHERE RD, BRADENTON, FL 34205")) is None

    @pytest.mark.asyncio
    async def test_resolve_empty_input(self, manatee):
        adapter, browser = manatee()
        assert await adapter.resolve(ResolveInput()) is None
        assert browser.submissions == []

    @pytest.mark.asyncio
    async def test_fetch_missing_page(self, manatee):
        adapter, _ = manatee(pages={})
        target = TargetDescriptor(target_key="parid:1", url=detail_url("1"))

        with pytest.raises(TargetNotFoundError):
            await adapter.fetch(target, FetchOptions())

    @pytest.mark.asyncio
    async def test_fetch_captcha_page_is_fatal(self, manatee, manatee_url):
        adapter, _ = manatee(pages={manatee_url: "<div class='g-recaptcha'>reCAPTCHA</div>"})
        target = TargetDescriptor(target_key="parid:5788100009", url=manatee_url)

        with pytest.raises(FatalFetchError):
            await adapter.fetch(target, FetchOptions())

    @pytest.mark.asyncio
    async def test_fetch_extract_normalize(self, manatee, manatee_url):
        adapter, _ = manatee()
        target = await adapter.resolve(ResolveInput(parcel_id=MANATEE_PARCEL_ID))

        fetched = await adapter.fetch(target, FetchOptions())
        assert len(fetched.payloads) == 1
        assert fetched.primary.url == manatee_url
        assert fetched.primary.kind == FetchKind.HTML

        extracted = adapter.extract(fetched.payloads)
        assert extracted.record.owner == "SMITH JOHN & JANE"
        assert extracted.dom_signature

        result = adapter.normalize(extracted.record, context(target=target, url=manatee_url))
        parcel = result.parcel

        assert str(parcel.key) == "12-081-5788100009"
        assert parcel.situs_address.normalized_full == "1234 PALM AVE, BRADENTON, FL, 34205"
        assert parcel.improvements.year_built == 1985
        assert parcel.improvements.garage is True
        assert parcel.improvements.pool is True
        assert [a.tax_year for a in parcel.assessments] == [2024, 2023]
        assert parcel.assessments[0].exemptions == ["HOMESTEAD"]
        assert parcel.assessments[1].exemptions == []
        assert parcel.sales[0].sale_date == date(2019, 6, 15)
        assert parcel.sales[0].sale_price == 325000
        assert result.confidence == 0.9
        assert parcel.confidence == result.confidence

    def test_extract_without_payloads(self, manatee):
        adapter, _ = manatee()
        result = adapter.extract([])

        assert result.record == AssessorRecord()
        assert result.warnings == ["no payloads"]

    @pytest.mark.asyncio
    async def test_close_leaves_injected_browser_open(self, manatee):
        adapter, browser = manatee()
        await adapter.close()
        assert browser.closed is False


# ============================================================================
# Sarasota
# ============================================================================

RESULT_LIST_HTML = """
<table>
  <thead><tr><th>Parcel</th><th>Address</th></tr></thead>
  <tbody>
    <tr><td><a href="/propertysearch/parcel/details/0111111111">0111111111</a></td><td>100 MAIN ST UNIT 1 SARASOTA</td></tr>
    <tr><td><a href="/propertysearch/parcel/details/0222222222">0222222222</a></td><td>100 MAIN ST UNIT 2 SARASOTA</td></tr>
  </tbody>
</table>
"""


class TestSarasotaAdapter:

    @pytest_asyncio.fixture
    async def sarasota(self):
        clients = []

        def factory(handler):
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
            clients.append(client)
            return SarasotaPaoAdapter(client=client, rate_limiter=limiter())

        yield factory

        for client in clients:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_resolve_by_parcel_id(self, sarasota):
        def handler(request):
            raise AssertionError("no request expected")

        target = await sarasota(handler).resolve(ResolveInput(parcel_id="0123-456-789"))

        assert target.target_key == f"parcel:{SARASOTA_PARCEL_ID}"
        assert target.url == sarasota_detail_url(SARASOTA_PARCEL_ID)

    @pytest.mark.asyncio
    async def test_resolve_address_redirect(self, sarasota, parcel_page_html):
        requests = []

        def handler(request):
            requests.append(request)
            if request.method == "POST":
                return httpx.Response(302, headers={"Location": sarasota_detail_url(SARASOTA_PARCEL_ID)})
            return httpx.Response(200, text=parcel_page_html)

        target = await sarasota(handler).resolve(ResolveInput(address="1234 PALM AVE"))

        assert target.target_key == f"parcel:{SARASOTA_PARCEL_ID}"
        assert requests[0].method == "POST"
        assert b"AddressKeywords=1234+PALM+AVE" in requests[0].content

    @pytest.mark.asyncio
    async def test_resolve_address_from_result_list(self, sarasota):
        def handler(request):
            return httpx.Response(200, text=RESULT_LIST_HTML)

        target = await sarasota(handler).resolve(ResolveInput(address="100 Main St Unit 2"))

        assert target.target_key == "parcel:0222222222"

    @pytest.mark.asyncio
    async def test_resolve_no_results(self, sarasota):
        def handler(request):
            return httpx.Response(200, text="<p>No records found</p>")

        assert await sarasota(handler).resolve(ResolveInput(address="1 NOWHERE RD")) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,error", [
        (httpx.Response(404), TargetNotFoundError),
        (httpx.Response(503), TransientFetchError),
        (httpx.Response(429), TransientFetchError),
        (httpx.Response(403, text="Forbidden"), FatalFetchError),
        (httpx.Response(200, text="<h1>Too many requests</h1>"), TransientFetchError),
        (httpx.Response(200, text="<p>Verify you are human</p>"), FatalFetchError),
    ])
    async def test_fetch_error_classification(self, sarasota, response, error):
        adapter = sarasota(lambda request: response)
        target = await adapter.resolve(ResolveInput(parcel_id=SARASOTA_PARCEL_ID))

        with pytest.raises(error):
            await adapter.fetch(target, FetchOptions(timeout=1))

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, sarasota):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = sarasota(handler)
        target = await adapter.resolve(ResolveInput(parcel_id=SARASOTA_PARCEL_ID))

        with pytest.raises(TransientFetchError):
            await adapter.fetch(target, FetchOptions(timeout=1))

    @pytest.mark.asyncio
    async def test_fetch_and_normalize(self, sarasota, parcel_page_html):
        adapter = sarasota(lambda request: httpx.Response(200, text=parcel_page_html))
        target = await adapter.resolve(ResolveInput(parcel_id=SARASOTA_PARCEL_ID))

        fetched = await adapter.fetch(target, FetchOptions(timeout=1))
        extracted = adapter.extract(fetched.payloads)
        result = adapter.normalize(extracted.record, context("fl-sarasota-pa", target=target))

        assert fetched.primary.status == 200
        assert result.parcel.county_fips == "115"
        assert result.parcel.owner_name == "SMITH JOHN & JANE"


# ============================================================================
# Stellar Realist
# ============================================================================

REALIST_JSON = {
    "property": {
        "address": "1234 PALM AVE, BRADENTON, FL 34205",
        "apn": "5788-1000-09",
        "fips": "12081",
    },
    "sellScore": {"score": 72, "indicator": "Likely"},
    "realAvm": {"value": 412000, "low": 390000, "high": 430000, "confidence": 85, "asOf": "2024-04-30"},
    "rentalTrends": {
        "currentRent": 2650,
        "series": [{"period": "2024-03", "value": 2600}, {"period": "2024-04", "value": 2650}],
    },
    "listings": [{"status": "Closed", "listPrice": 335000, "closePrice": 325000, "mlsNumber": "A4400001"}],
}

REALIST_PAGE_HTML = """
<html><body>
  <p>Sell Score 65</p>
  <p>Real AVM $398,500</p>
  <p>Confidence 80%</p>
  <p>Rental Trend $2,400</p>
</body></html>
"""

ADDRESS = "1234 PALM AVE, BRADENTON, FL 34205"


class TestStellarRealistAdapter:

    @pytest.fixture
    def stellar(self, make_browser):
        def factory(search=None):
            browser = make_browser(pages={}, search=search)
            adapter = StellarRealistAdapter(browser=browser, rate_limiter=limiter(), capture_url_parts=["/api/"])
            return adapter, browser
        return factory

    @pytest.mark.asyncio
    async def test_resolve_needs_address(self, stellar):
        adapter, _ = stellar()

        assert await adapter.resolve(ResolveInput(parcel_id=MANATEE_PARCEL_ID)) is None

        target = await adapter.resolve(ResolveInput(address=ADDRESS, county_fips="081"))
        assert target.target_key == "address:1234 PALM AVE BRADENTON FL 34205"
        assert target.county_fips == "081"

    @pytest.mark.asyncio
    async def test_fetch_captures_json(self, stellar):
        search = PageCapture(
            url="https://prd.realist.com",
            final_url="https://prd.realist.com/property/1",
            status=200,
            html=REALIST_PAGE_HTML,
            json_responses=[CapturedResponse(url="https://prd.realist.com/api/property", status=200, body=REALIST_JSON)],
            session_reused=True,
        )
        adapter, browser = stellar(search=search)
        target = await adapter.resolve(ResolveInput(address=ADDRESS))

        fetched = await adapter.fetch(target, FetchOptions())

        assert len(fetched.payloads) == 2
        assert fetched.payloads[0].kind == FetchKind.HTML
        assert fetched.payloads[1].kind == FetchKind.JSON
        assert json.loads(fetched.payloads[1].body) == REALIST_JSON
        assert fetched.session_reused is True
        assert list(browser.submissions[0][1].values()) == [ADDRESS]

    def test_extract_from_json(self, stellar):
        adapter, _ = stellar()
        payloads = [
            RawPayload(url="https://prd.realist.com/property/1", body="<html></html>",
                       metadata={"address_searched": ADDRESS}),
            RawPayload(url="https://prd.realist.com/api/property", body=json.dumps(REALIST_JSON),
                       kind=FetchKind.JSON),
        ]

        result = adapter.extract(payloads)
        record = result.record

        assert record.matched_address == ADDRESS
        assert record.parcel_id == "5788-1000-09"
        assert record.county_fips == "081"
        assert record.sell_score.score == 72
        assert record.real_avm.value == 412000
        assert record.real_avm.confidence == 85
        assert record.rental_trends.current_rent == 2650
        assert [p.period for p in record.rental_trends.series] == ["2024-03", "2024-04"]
        assert record.listings[0].close_price == 325000
        assert result.warnings == []

        normalized = adapter.normalize(record, context("fl-stellar-realist"))
        assert normalized.confidence == 1.0
        assert str(normalized.parcel.key) == "12-081-5788100009"
        assert normalized.parcel.market.avm_value == 412000
        assert normalized.parcel.market.listing_count == 1

    def test_extract_falls_back_to_page_text(self, stellar):
        adapter, _ = stellar()
        payloads = [
            RawPayload(url="https://prd.realist.com/property/1", body=REALIST_PAGE_HTML,
                       metadata={"address_searched": ADDRESS}),
            RawPayload(url="https://prd.realist.com/api/broken", body="{not json", kind=FetchKind.JSON),
        ]

        result = adapter.extract(payloads)
        record = result.record

        assert record.sell_score.score == 65
        assert record.real_avm.value == 398500
        assert record.real_avm.confidence == 80
        assert record.rental_trends.current_rent == 2400
        assert any("unreadable JSON" in w for w in result.warnings)
        assert "no matched address" in result.warnings

    def test_normalize_without_parcel_key(self, stellar):
        adapter, _ = stellar()

        with pytest.raises(NormalizationError) as exc_info:
            adapter.normalize(MlsRecord(matched_address=ADDRESS), context("fl-stellar-realist"))

        assert exc_info.value.context["missing"] == ["parcel_id", "county_fips"]

    def test_county_hint_from_target(self, stellar):
        adapter, _ = stellar()
        target = TargetDescriptor(
            target_key="address:X", url="", parcel_id_raw="5788100009", address=ADDRESS, county_fips="081"
        )

        result = adapter.normalize(MlsRecord(address_searched=ADDRESS), context("fl-stellar-realist", target=target))

        assert result.parcel.county_fips == "081"
        assert result.confidence == 0.0
