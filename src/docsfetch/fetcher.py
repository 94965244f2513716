"""Page fetching: renderers plus the timeout / retry / delay policy.

Two renderers implement the PageRenderer protocol:

* ``BrowserRenderer`` drives headless Chromium through Playwright so that
  JavaScript-rendered documentation sites can be crawled. One browser and one
  tab per package crawl, torn down in ``__aexit__``.
* ``HttpRenderer`` fetches static HTML with the shared httpx client and
  parses it with BeautifulSoup.

``PageFetcher`` wraps either one. A failed page is logged and skipped; it is
never fatal to the crawl.
"""

from __future__ import annotations

import asyncio
import ipaddress
import random
from typing import TYPE_CHECKING
from urllib.parse import urljoin, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from docsfetch.errors import BrowserLaunchError, ErrorCode, NavigationError
from docsfetch.models.crawl import FetchedPage

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from playwright.async_api import Browser, Page, Playwright

    from docsfetch.config import CrawlSettings, Settings
    from docsfetch.protocols import PageRenderer

log = structlog.get_logger()

PRIVATE_NETWORKS: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
]

_EXPAND_COLLAPSED_JS = """
() => {
    const controls = document.querySelectorAll('[aria-expanded="false"]');
    controls.forEach(el => { try { el.click(); } catch (e) {} });
    return controls.length;
}
"""
_COLLECT_LINKS_JS = "els => els.map(a => a.href).filter(Boolean)"


# ---------------------------------------------------------------------------
# URL policy helpers
# ---------------------------------------------------------------------------


def is_private_host(hostname: str) -> bool:
    """True for localhost and addresses in private / loopback ranges."""
    host = hostname.strip("[]").rstrip(".").lower()
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False  # hostname is a domain name, not an IP
    return any(addr in net for net in PRIVATE_NETWORKS)


def is_host_allowed(hostname: str, allowlist: Iterable[str]) -> bool:
    """Exact match or subdomain of an allow-listed domain."""
    host = hostname.rstrip(".").lower()
    return any(host == domain or host.endswith("." + domain) for domain in allowlist)


def is_url_allowed(
    url: str,
    allowlist: frozenset[str],
    *,
    allow_any_public: bool = False,
) -> bool:
    """Check whether a URL may be fetched.

    Only http(s) is accepted. Private IP ranges are blocked unconditionally,
    regardless of allowlist. With ``allow_any_public`` every other host passes.
    """
    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    if parsed.scheme not in ("http", "https") or not hostname:
        return False
    if is_private_host(hostname):
        return False
    if allow_any_public:
        return True
    return is_host_allowed(hostname, allowlist)


def backoff_delay(attempt: int, base_seconds: float = 1.0, max_seconds: float = 10.0) -> float:
    """Exponential backoff with jitter for the given 1-based attempt."""
    delay = min(base_seconds * 2 ** (attempt - 1), max_seconds)
    return delay * random.uniform(0.5, 1.5)


def build_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    user_agent = settings.crawl.user_agent if settings is not None else "docsfetch/1.0"
    timeout = settings.crawl.navigation_timeout_seconds if settings is not None else 30.0
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def parse_html(url: str, html: str) -> FetchedPage:
    """Extract title and absolute link targets from static HTML."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    links = [urljoin(url, str(a["href"])) for a in soup.find_all("a", href=True)]
    return FetchedPage(url=url, html=html, title=title, links=links)


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


class BrowserRenderer:
    """Headless Chromium renderer for JavaScript-driven documentation sites."""

    def __init__(
        self,
        *,
        content_selector: str = "main",
        timeout_seconds: float = 45.0,
        expand_settle_ms: int = 500,
        headless: bool = True,
        user_agent: str | None = None,
    ) -> None:
        self._content_selector = content_selector
        self._timeout_ms = timeout_seconds * 1000
        self._expand_settle_ms = expand_settle_ms
        self._headless = headless
        self._user_agent = user_agent
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    @classmethod
    def from_settings(cls, crawl: CrawlSettings) -> BrowserRenderer:
        return cls(
            content_selector=crawl.content_selector,
            timeout_seconds=crawl.navigation_timeout_seconds,
            expand_settle_ms=crawl.expand_settle_ms,
            headless=crawl.headless,
            user_agent=crawl.user_agent,
        )

    async def __aenter__(self) -> BrowserRenderer:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self._headless)
            self._page = await self._browser.new_page(user_agent=self._user_agent)
        except PlaywrightError as exc:
            await self.close()
            raise BrowserLaunchError(
                f"Failed to launch headless browser: {exc}",
                suggestion="Run 'playwright install chromium', or use --renderer http.",
            ) from exc
        log.debug("browser_started", headless=self._headless)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Release tab, browser and driver. Safe to call more than once."""
        page, browser, playwright = self._page, self._browser, self._playwright
        self._page = self._browser = self._playwright = None
        for handle in (page, browser):
            if handle is None:
                continue
            try:
                await handle.close()
            except PlaywrightError:
                log.debug("browser_close_failed", exc_info=True)
        if playwright is not None:
            await playwright.stop()
            log.debug("browser_stopped")

    async def navigate(self, url: str) -> FetchedPage:
        if self._page is None:
            raise RuntimeError("BrowserRenderer used outside of 'async with'")
        page = self._page

        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationError(
                f"Timed out loading {url}",
                code=ErrorCode.NAVIGATION_TIMEOUT,
                recoverable=True,
            ) from exc
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation failed for {url}: {exc}", recoverable=True) from exc

        if response is not None and response.status >= 400:
            raise _http_status_error(url, response.status)

        try:
            await page.wait_for_selector(self._content_selector, timeout=self._timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationError(
                f"Content selector {self._content_selector!r} never appeared on {url}",
                code=ErrorCode.NAVIGATION_TIMEOUT,
                recoverable=True,
            ) from exc

        await self._expand_navigation(page)

        try:
            html = await page.content()
            title = await page.title()
            links = await page.eval_on_selector_all("a[href]", _COLLECT_LINKS_JS)
        except PlaywrightError as exc:
            raise NavigationError(f"Extraction failed for {url}: {exc}", recoverable=True) from exc

        return FetchedPage(url=url, html=html, title=title, links=list(links))

    async def _expand_navigation(self, page: Page) -> None:
        """Click collapsed nav controls so nested links become discoverable."""
        try:
            expanded = await page.evaluate(_EXPAND_COLLAPSED_JS)
            if expanded and self._expand_settle_ms:
                await page.wait_for_timeout(self._expand_settle_ms)
        except PlaywrightError:
            # Best effort: the page is still usable without expansion
            log.debug("navigation_expand_failed", url=page.url, exc_info=True)
            return
        if expanded:
            log.debug("navigation_expanded", url=page.url, controls=expanded)


class HttpRenderer:
    """Static-HTML renderer over the shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, *, max_redirects: int = 3) -> None:
        self._client = client
        self._max_redirects = max_redirects

    async def __aenter__(self) -> HttpRenderer:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        # The client is owned by the caller
        return None

    async def navigate(self, url: str) -> FetchedPage:
        current_url = url
        try:
            for hop in range(self._max_redirects + 1):
                if not is_url_allowed(current_url, frozenset(), allow_any_public=True):
                    log.warning("fetch_blocked", url=current_url, reason="private_address")
                    raise NavigationError(
                        f"URL not allowed: {current_url}",
                        code=ErrorCode.URL_NOT_ALLOWED,
                    )

                response = await self._client.get(current_url)

                if response.is_redirect and "location" in response.headers:
                    if hop == self._max_redirects:
                        raise NavigationError(f"Too many redirects fetching {url}")
                    current_url = urljoin(current_url, response.headers["location"])
                    continue

                if not response.is_success:
                    raise _http_status_error(url, response.status_code)

                content_type = response.headers.get("content-type", "text/html")
                if "html" not in content_type:
                    raise NavigationError(f"Not an HTML page ({content_type}): {url}")

                return parse_html(str(response.url), response.text)
        except NavigationError:
            raise
        except httpx.TimeoutException as exc:
            raise NavigationError(
                f"Timed out fetching {url}",
                code=ErrorCode.NAVIGATION_TIMEOUT,
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise NavigationError(f"Network error fetching {url}: {exc}", recoverable=True) from exc

        # Unreachable but satisfies the type checker
        raise NavigationError(f"Redirect loop fetching {url}")


def _http_status_error(url: str, status: int) -> NavigationError:
    if status == 404:
        return NavigationError(f"HTTP 404 fetching {url}", code=ErrorCode.PAGE_NOT_FOUND)
    return NavigationError(
        f"HTTP {status} fetching {url}",
        recoverable=status >= 500 or status in {408, 429},
    )


# ---------------------------------------------------------------------------
# Fetch policy
# ---------------------------------------------------------------------------


class PageFetcher:
    """Applies per-navigation timeout, retry and inter-request delay."""

    def __init__(
        self,
        renderer: PageRenderer,
        *,
        delay_ms: int = 1000,
        timeout_seconds: float = 45.0,
        max_retries: int = 2,
    ) -> None:
        self._renderer = renderer
        self._delay_seconds = delay_ms / 1000
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._last: tuple[str, FetchedPage] | None = None
        self.failures: list[str] = []

    async def fetch_page(self, url: str) -> FetchedPage | None:
        """Navigate to url. Returns None (after logging) when the page fails."""
        try:
            page = await self._navigate_with_retry(url)
        except NavigationError as exc:
            log.warning("page_fetch_failed", url=url, code=exc.code, error=exc.message)
            self.failures.append(url)
            self._last = None
            return None
        finally:
            if self._delay_seconds:
                await asyncio.sleep(self._delay_seconds)

        self._last = (url, page)
        return page

    async def extract_links(self, url: str) -> list[str]:
        """Links found on url; reuses the last navigation when it was to url."""
        if self._last is not None and self._last[0] == url:
            return list(self._last[1].links)
        page = await self.fetch_page(url)
        return list(page.links) if page is not None else []

    async def _navigate_with_retry(self, url: str) -> FetchedPage:
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                async with asyncio.timeout(self._timeout_seconds):
                    return await self._renderer.navigate(url)
            except TimeoutError:
                error = NavigationError(
                    f"Timed out after {self._timeout_seconds}s loading {url}",
                    code=ErrorCode.NAVIGATION_TIMEOUT,
                    recoverable=True,
                )
            except NavigationError as exc:
                error = exc

            if not error.recoverable or attempt == attempts:
                raise error

            delay = backoff_delay(attempt)
            log.info(
                "page_fetch_retry",
                url=url,
                attempt=attempt,
                delay_seconds=round(delay, 2),
                error=error.message,
            )
            await asyncio.sleep(delay)

        # Unreachable but satisfies the type checker
        raise NavigationError(f"Retries exhausted for {url}")
