"""
Browser capability for sources that need a real browser.

Adapters depend on the BrowserDriver interface only. The Playwright
implementation connects to a remote browser over CDP when
PLAYWRIGHT_WS_ENDPOINT is set and launches a local Chromium otherwise;
in production a remote endpoint is required.

Failure mapping:
    - browser runtime unusable (no endpoint in production, no local
      executable, missing session file)      -> ConfigMissingError
    - navigation / selector timeouts, dropped
      connections, rate-limit pages          -> TransientFetchError
    - anything else, including bot walls     -> FatalFetchError
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from pathlib import Path
import json
import logging

from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.config import settings
from core.exceptions import ConfigMissingError, FatalFetchError, TransientFetchError

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    "browser has been closed",
    "target closed",
    "target page, context or browser has been closed",
    "connection refused",
    "websocket error",
    "disconnected",
    "net::err_",
)

_MISSING_RUNTIME_ERRORS = (
    "executable doesn't exist",
    "looks like playwright was just installed",
    "host system is missing dependencies",
)

# (needle, reason, transient)
_BLOCK_PATTERNS = (
    ("recaptcha", "reCAPTCHA detected", False),
    ("hcaptcha", "hCaptcha detected", False),
    ("verify you are human", "Human verification required", False),
    ("checking your browser", "Cloudflare protection detected", False),
    ("access to this page has been denied", "Access denied", False),
    ("you have been blocked", "IP blocked", False),
    ("rate limit exceeded", "Rate limited", True),
    ("too many requests", "Too many requests", True),
    ("unusual traffic", "Bot detected", False),
)


@dataclass
class CapturedResponse:
    url: str
    status: int
    body: Any


@dataclass
class PageCapture:
    """Everything a browser visit produced."""
    url: str
    final_url: str
    status: Optional[int]
    html: str
    json_responses: List[CapturedResponse] = field(default_factory=list)
    session_reused: bool = False

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [{"url": r.url, "status": r.status, "body": r.body} for r in self.json_responses]


def detect_blocking(html: str) -> Optional[tuple]:
    """(reason, transient) when the page is a block/captcha page, else None."""
    lowered = (html or "").lower()
    for needle, reason, transient in _BLOCK_PATTERNS:
        if needle in lowered:
            return reason, transient
    return None


def raise_if_blocked(capture: PageCapture, source_key: str) -> None:
    blocked = detect_blocking(capture.html)
    if not blocked:
        return
    reason, transient = blocked
    error_cls = TransientFetchError if transient else FatalFetchError
    raise error_cls(
        f"{source_key} blocked the request: {reason}",
        context={"source_key": source_key, "url": capture.final_url},
    )


class BrowserDriver(ABC):
    """Minimal browser surface the adapters need."""

    @abstractmethod
    async def navigate(
        self,
        url: str,
        *,
        capture: Sequence[str] = (),
        nav_timeout: float = 45.0,
        wait_for: Optional[str] = None,
    ) -> PageCapture:
        """Open ``url`` and return the rendered page plus matching JSON responses."""
        pass

    @abstractmethod
    async def submit_form(
        self,
        url: str,
        fields: Dict[str, str],
        *,
        submit: Optional[str] = None,
        capture: Sequence[str] = (),
        nav_timeout: float = 45.0,
        wait_for: Optional[str] = None,
    ) -> PageCapture:
        """
        Open ``url``, fill ``fields`` (selector -> value) and submit.

        Submits by clicking ``submit`` when given, otherwise by pressing
        Enter in the last filled field.
        """
        pass

    async def close(self) -> None:
        return None


class PlaywrightBrowserDriver(BrowserDriver):
    """
    BrowserDriver backed by playwright.async_api.

    One browser is started lazily and reused; every visit gets a fresh
    context, seeded from ``storage_state_path`` when that file exists so a
    pre-authenticated session is reused.
    """

    def __init__(
        self,
        ws_endpoint: Optional[str] = None,
        headless: bool = True,
        user_agent: Optional[str] = None,
        require_remote: bool = False,
        storage_state_path: Optional[str] = None,
        require_storage_state: bool = False,
    ):
        self.ws_endpoint = ws_endpoint
        self.headless = headless
        self.user_agent = user_agent or settings.HTTP_USER_AGENT
        self.require_remote = require_remote
        self.storage_state_path = storage_state_path
        self.require_storage_state = require_storage_state
        self._playwright = None
        self._browser = None

    @classmethod
    def from_settings(cls, **overrides) -> "PlaywrightBrowserDriver":
        kwargs = dict(
            ws_endpoint=settings.PLAYWRIGHT_WS_ENDPOINT,
            headless=settings.PLAYWRIGHT_HEADLESS,
            user_agent=settings.HTTP_USER_AGENT,
            require_remote=settings.is_production,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def check_available(self) -> None:
        """Raise ConfigMissingError when this environment cannot run a browser."""
        if self.require_remote and not self.ws_endpoint:
            raise ConfigMissingError(
                "PLAYWRIGHT_WS_ENDPOINT not set - remote browser required in production",
                context={"environment": settings.ENVIRONMENT},
            )
        if self.require_storage_state and not self._has_storage_state():
            raise ConfigMissingError(
                "No pre-authenticated browser session available",
                context={"storage_state_path": self.storage_state_path},
            )

    async def _ensure_browser(self):
        self.check_available()
        if self._browser is not None and self._browser.is_connected():
            return self._browser

        try:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self.ws_endpoint:
                logger.info(f"Connecting to remote browser: {self.ws_endpoint[:50]}...")
                self._browser = await self._playwright.chromium.connect_over_cdp(self.ws_endpoint)
            else:
                logger.info("Launching local Chromium browser")
                self._browser = await self._playwright.chromium.launch(headless=self.headless)

        except PlaywrightError as e:
            message = str(e).lower()
            if any(marker in message for marker in _MISSING_RUNTIME_ERRORS):
                raise ConfigMissingError(
                    "Chromium is not installed for Playwright",
                    original_exception=e,
                )
            raise TransientFetchError(
                "Failed to start or connect to browser",
                context={"ws_endpoint": bool(self.ws_endpoint)},
                original_exception=e,
            )

        return self._browser

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    def _has_storage_state(self) -> bool:
        return bool(self.storage_state_path) and Path(self.storage_state_path).is_file()

    @asynccontextmanager
    async def _page(self, nav_timeout: float):
        browser = await self._ensure_browser()
        reused = self._has_storage_state()

        context = await browser.new_context(
            user_agent=self.user_agent,
            locale="en-US",
            timezone_id="America/New_York",
            viewport={"width": 1920, "height": 1080},
            storage_state=self.storage_state_path if reused else None,
        )
        context.set_default_navigation_timeout(nav_timeout * 1000)
        context.set_default_timeout(nav_timeout * 1000)
        page = await context.new_page()

        try:
            yield page, reused
            if self.storage_state_path:
                await context.storage_state(path=self.storage_state_path)
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser context: {e}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def navigate(self, url, *, capture=(), nav_timeout=45.0, wait_for=None) -> PageCapture:
        return await self._visit(url, None, None, capture, nav_timeout, wait_for)

    async def submit_form(self, url, fields, *, submit=None, capture=(), nav_timeout=45.0, wait_for=None) -> PageCapture:
        return await self._visit(url, fields, submit, capture, nav_timeout, wait_for)

    async def _visit(
        self,
        url: str,
        fields: Optional[Dict[str, str]],
        submit: Optional[str],
        capture: Sequence[str],
        nav_timeout: float,
        wait_for: Optional[str],
    ) -> PageCapture:
        needles = [needle.lower() for needle in capture]
        matched = []

        def on_response(response):
            if needles and any(needle in response.url.lower() for needle in needles):
                matched.append(response)

        try:
            async with self._page(nav_timeout) as (page, reused):
                page.on("response", on_response)

                response = await page.goto(url, wait_until="domcontentloaded")
                status = response.status if response else None

                if fields:
                    last_selector = None
                    for selector, value in fields.items():
                        await page.fill(selector, value)
                        last_selector = selector

                    if submit:
                        await page.click(submit)
                    else:
                        await page.press(last_selector, "Enter")

                    await page.wait_for_load_state("domcontentloaded")

                if wait_for:
                    await page.wait_for_selector(wait_for)

                if needles:
                    await page.wait_for_load_state("networkidle")

                html = await page.content()
                captured = await _read_json_responses(matched)

                return PageCapture(
                    url=url,
                    final_url=page.url,
                    status=status,
                    html=html,
                    json_responses=captured,
                    session_reused=reused,
                )

        except PlaywrightTimeoutError as e:
            raise TransientFetchError(
                f"Browser timed out loading {url}",
                context={"url": url, "nav_timeout": nav_timeout},
                original_exception=e,
            )
        except PlaywrightError as e:
            message = str(e).lower()
            if any(marker in message for marker in _CONNECTION_ERRORS):
                self._browser = None
                raise TransientFetchError(
                    f"Browser connection failed while loading {url}",
                    context={"url": url},
                    original_exception=e,
                )
            raise FatalFetchError(
                f"Browser error while loading {url}",
                context={"url": url},
                original_exception=e,
            )


async def _read_json_responses(responses) -> List[CapturedResponse]:
    captured = []
    for response in responses:
        content_type = (response.headers or {}).get("content-type", "")
        if "json" not in content_type:
            continue
        try:
            body = await response.json()
        except (PlaywrightError, json.JSONDecodeError, ValueError):
            logger.debug(f"Skipping unreadable JSON response from {response.url}")
            continue
        captured.append(CapturedResponse(url=response.url, status=response.status, body=body))
    return captured
