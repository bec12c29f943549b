"""
Pytest configuration and fixtures
"""

import asyncio
import os
from typing import AsyncGenerator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import build_engine, build_session_maker, create_tables
from ingestion.browser import BrowserDriver, PageCapture
from ingestion.rate_limit import RateLimiter, reset_rate_limiters
from ingestion.registry import SourceRegistry
from ingestion.runner import IngestionPipeline, PipelineOptions
from ingestion.sources.manatee_pao import MANATEE_PAO_CONFIG, ManateePaoAdapter, detail_url
from models.base import Base

# In-memory SQLite by default; point at PostgreSQL with TEST_DATABASE_URL
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

MANATEE_PARCEL_ID = "5788100009"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = build_engine(TEST_DATABASE_URL)
    await create_tables(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with build_session_maker(test_engine)() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def _fresh_rate_limiters():
    reset_rate_limiters()
    yield
    reset_rate_limiters()


# ============================================================================
# Browser / adapter doubles
# ============================================================================

class FakeBrowser(BrowserDriver):
    """
    Scripted BrowserDriver.

    ``outcomes`` is consumed by navigate, one entry per call: an exception
    instance is raised, a number delays the call by that many seconds,
    None serves the page from ``pages``. Unknown URLs answer 404.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        outcomes: Optional[List] = None,
        search=None,
    ):
        self.pages = dict(pages or {})
        self.outcomes = list(outcomes or [])
        self.search = search
        self.navigations: List[str] = []
        self.submissions: List[tuple] = []
        self.closed = False

    async def navigate(self, url, *, capture=(), nav_timeout=45.0, wait_for=None) -> PageCapture:
        self.navigations.append(url)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, (int, float)):
                await asyncio.sleep(outcome)

        html = self.pages.get(url)
        if html is None:
            return PageCapture(url=url, final_url=url, status=404, html="<html><body>Page not found</body></html>")
        return PageCapture(url=url, final_url=url, status=200, html=html)

    async def submit_form(self, url, fields, *, submit=None, capture=(), nav_timeout=45.0, wait_for=None) -> PageCapture:
        self.submissions.append((url, dict(fields)))
        if isinstance(self.search, Exception):
            raise self.search
        if self.search is not None:
            return self.search
        return PageCapture(url=url, final_url=url, status=200, html="<p>No results found</p>")

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stands in for asyncio.sleep during retry backoff."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def fast_limiter() -> RateLimiter:
    return RateLimiter(rps=1000, burst=100)


def build_registry(browser: BrowserDriver) -> SourceRegistry:
    registry = SourceRegistry(default_source=MANATEE_PAO_CONFIG.source_key)
    registry.register(
        MANATEE_PAO_CONFIG.source_key,
        MANATEE_PAO_CONFIG,
        lambda config: ManateePaoAdapter(config, browser=browser, rate_limiter=fast_limiter()),
    )
    return registry.freeze()


# ============================================================================
# HTML fixtures
# ============================================================================

PARCEL_PAGE_HTML = """
<html>
<head><title>Parcel 5788100009</title></head>
<body>
  <div class="container">
    <div class="row"><div class="col-4">Parcel ID:</div><div class="col-8">5788-1000-09</div></div>
    <div class="row"><div class="col-4">Owner:</div><div class="col-8">SMITH JOHN &amp; JANE</div></div>
    <div class="row"><div class="col-4">Situs Address:</div><div class="col-8">1234 PALM AVE, BRADENTON, FL 34205</div></div>
    <div class="row"><div class="col-4">Use Code:</div><div class="col-8">0100</div></div>
    <div class="row"><div class="col-4">Land Use:</div><div class="col-8">SINGLE FAMILY RESIDENTIAL</div></div>
    <div class="row"><div class="col-4">Land Area:</div><div class="col-8">0.25 Acres</div></div>
    <div class="row"><div class="col-4">Exemptions:</div><div class="col-8">HOMESTEAD</div></div>
    <div class="row"><div class="col-4">Legal Description:</div><div class="col-8">LOT 5 BLK 2 PALM GROVE SUB</div></div>
  </div>

  <table id="values">
    <thead><tr><th>Year</th><th>Land</th><th>Building</th><th>Just</th><th>Assessed</th><th>Taxable</th></tr></thead>
    <tbody>
      <tr><td>2023</td><td>$100,000</td><td>$250,000</td><td>$350,000</td><td>$300,000</td><td>$250,000</td></tr>
      <tr><td>2024</td><td>$110,000</td><td>$260,000</td><td>$370,000</td><td>$309,000</td><td>$259,000</td></tr>
    </tbody>
  </table>

  <table id="sales">
    <thead><tr><th>Sale Date</th><th>Sale Price</th><th>Book/Page</th><th>Deed Type</th><th>Qualified</th><th>Grantor</th></tr></thead>
    <tbody>
      <tr><td>06/15/2019</td><td>$325,000</td><td>2750/1234</td><td>WD</td><td>Q</td><td>DOE JANE</td></tr>
    </tbody>
  </table>

  <table id="buildings">
    <thead><tr><th>Year Built</th><th>Beds</th><th>Baths</th><th>Living Area</th><th>Stories</th><th>Pool</th><th>Garage</th></tr></thead>
    <tbody>
      <tr><td>1985</td><td>3</td><td>2</td><td>1,850</td><td>1</td><td>Yes</td><td>2</td></tr>
    </tbody>
  </table>
</body>
</html>
"""

FIRST_SALE_ROW = "<tr><td>06/15/2019</td>"
NEW_SALE_ROW = "<tr><td>03/01/2024</td><td>$410,000</td><td>3100/22</td><td>WD</td><td>Q</td><td>SMITH JOHN</td></tr>"


@pytest.fixture
def parcel_page_html() -> str:
    return PARCEL_PAGE_HTML


@pytest.fixture
def parcel_page_with_new_sale() -> str:
    return PARCEL_PAGE_HTML.replace(FIRST_SALE_ROW, NEW_SALE_ROW + FIRST_SALE_ROW)


@pytest.fixture
def manatee_url() -> str:
    return detail_url(MANATEE_PARCEL_ID)


@pytest.fixture
def make_browser(parcel_page_html, manatee_url):
    """FakeBrowser factory; serves the Manatee parcel page unless told otherwise."""

    def factory(pages=None, outcomes=None, search=None) -> FakeBrowser:
        if pages is None:
            pages = {manatee_url: parcel_page_html}
        return FakeBrowser(pages=pages, outcomes=outcomes, search=search)

    return factory


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_pipeline(db_session, recording_sleep):
    """Pipeline factory over the Manatee adapter driven by a given browser."""

    def factory(browser: BrowserDriver, fetch_timeout: float = 5.0) -> IngestionPipeline:
        return IngestionPipeline(
            db_session,
            build_registry(browser),
            options=PipelineOptions(fetch_timeout=fetch_timeout, nav_timeout=fetch_timeout),
            sleep=recording_sleep,
        )

    return factory


@pytest.fixture
def fast_rate_limiter() -> RateLimiter:
    return fast_limiter()


# ============================================================================
# API client
# ============================================================================

@pytest_asyncio.fixture
async def make_client(db_session):
    """
    httpx client over the ASGI app, with the database session and registry
    overridden. Runs on the test's event loop, so the in-memory database
    is shared with the test.
    """
    from api.dependencies import get_db, get_registry
    from api.main import app

    clients = []

    async def factory(browser: BrowserDriver) -> httpx.AsyncClient:
        registry = build_registry(browser)

        async def override_get_db():
            yield db_session

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_registry] = lambda: registry

        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()
