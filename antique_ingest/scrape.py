# antique_ingest/scrape.py
"""Craigslist antique listings: paginated search collection and detail pages.

Pages are loaded through Playwright with images, stylesheets and fonts
blocked, and the rendered HTML is parsed with BeautifulSoup. Every page load,
search or detail, goes through the page queue.
"""
import asyncio
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Dict, List, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import async_playwright

from .rate_queue import RateLimitedQueue
from .schemas import ListingData
from .utils import get_logger

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"

NO_RESULTS_SELECTOR = ".alert-warning"
RESULT_LINK_SELECTOR = ".result-title"
REMOVED_SELECTORS = (".removed", ".expired")
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font"})
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1280,800",
]
_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%a %b %d %Y",
)


@dataclass
class SearchPage:
    no_results: bool = False
    urls: List[str] = field(default_factory=list)


def parse_price(text: Optional[str]) -> Optional[float]:
    """'$1,250' -> 1250.0; blank or unparseable text gives None, never 0."""
    if not text:
        return None
    cleaned = re.sub(r"[^\d.\-]", "", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_posted_date(value: Optional[str], fallback: Optional[datetime] = None) -> datetime:
    fallback = fallback or datetime.now(timezone.utc)
    if not value:
        return fallback
    value = value.strip()
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return fallback


def full_size_image_url(thumbnail_url: str, thumbnail_token: str, full_size_token: str) -> str:
    return thumbnail_url.replace(thumbnail_token, full_size_token)


def parse_attributes(soup: BeautifulSoup) -> Dict[str, Union[bool, str]]:
    """Flatten `.attrgroup` spans: 'key: value' pairs and bare flags."""
    attributes = {}
    for group in soup.select(".attrgroup"):
        for span in group.select("span"):
            text = span.get_text().strip()
            if not text:
                continue
            if ":" in text:
                key, _, value = text.partition(":")
                attributes[key.strip()] = value.strip()
            else:
                attributes[text] = True
    return attributes


def parse_search_page(html: str, page_url: str) -> SearchPage:
    soup = BeautifulSoup(html, _bs_parser)
    if soup.select_one(NO_RESULTS_SELECTOR) is not None:
        return SearchPage(no_results=True)
    urls = []
    for a in soup.select(RESULT_LINK_SELECTOR):
        href = a.get("href")
        if href:
            urls.append(urljoin(page_url, href))
    return SearchPage(urls=urls)


def parse_listing_page(
    html: str,
    url: str,
    thumbnail_token: str = "50x50c",
    full_size_token: str = "600x450",
    fetched_at: Optional[datetime] = None,
) -> Optional[ListingData]:
    """Build a listing from a detail page, or None if it was removed or expired."""
    soup = BeautifulSoup(html, _bs_parser)
    if any(soup.select_one(sel) is not None for sel in REMOVED_SELECTORS):
        return None

    def get_text(selector):
        el = soup.select_one(selector)
        return el.get_text().strip() if el else ""

    date_el = soup.select_one(".date.timeago")
    date_text = None
    if date_el is not None:
        date_text = date_el.get("datetime") or date_el.get_text()

    image_urls = []
    for thumb in soup.select(".gallery .thumb"):
        src = thumb.get("data-src")
        if not src:
            img = thumb.find("img")
            src = img.get("src") if img else None
        if src:
            image_urls.append(full_size_image_url(src, thumbnail_token, full_size_token))

    return ListingData(
        id=str(uuid.uuid4()),
        url=url,
        title=get_text("#titletextonly"),
        price=parse_price(get_text(".price")),
        description=get_text("#postingbody"),
        location=get_text(".mapaddress") or get_text(".mapbox small"),
        posted_date=parse_posted_date(date_text, fallback=fetched_at),
        image_urls=image_urls,
        attributes=parse_attributes(soup),
    )


async def _block_heavy_resources(route):
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class ListingFetcher:
    """Collects listings from the paginated search and their detail pages.

    One browser context is shared; every task opens and closes its own page.
    """

    def __init__(self, settings, queue: Optional[RateLimitedQueue] = None, context=None, logger=None):
        self.settings = settings
        self.logger = logger or get_logger("ListingFetcher")
        self.queue = queue or RateLimitedQueue(
            concurrency=settings.concurrency,
            interval_cap=1,
            interval=settings.delay_between_pages,
            name="pages",
        )
        self._context = context
        self._playwright = None
        self._browser = None

    async def initialize(self):
        if self._context is not None:
            return
        self.logger.info("Initializing Playwright browser")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.settings.headless, args=BROWSER_ARGS)
        self._context = await self._browser.new_context(
            user_agent=self.settings.user_agent,
            viewport={"width": 1280, "height": 800},
        )
        self.logger.info("Browser initialized")

    async def close(self):
        try:
            if self._browser is not None:
                self.logger.info("Closing browser")
                try:
                    await self._context.close()
                finally:
                    browser, self._browser, self._context = self._browser, None, None
                    await browser.close()
        finally:
            if self._playwright is not None:
                playwright, self._playwright = self._playwright, None
                await playwright.stop()

    def search_page_url(self, page_num: int) -> str:
        if page_num == 0:
            return self.settings.search_url
        return f"{self.settings.search_url}?s={page_num * self.settings.results_per_page}"

    async def collect(self) -> List[ListingData]:
        """Return the listings whose detail pages were fetched successfully.

        Compare against the number of unique URLs (logged) to gauge loss.
        Losing the browser session raises instead.
        """
        self._require_context()
        self.logger.info("Starting to collect listings")
        urls = await self.collect_listing_urls()
        self.logger.info("Found %d unique antique listings", len(urls))

        results = await asyncio.gather(
            *(self.queue.submit(partial(self.scrape_listing_page, url)) for url in urls),
            return_exceptions=True,
        )
        listings = []
        for url, result in zip(urls, results):
            if isinstance(result, BaseException):
                self.logger.error("Browser session failed while scraping %s: %s", url, result)
                raise result
            if result is not None:
                listings.append(result)

        self.logger.info("Successfully scraped %d of %d listings", len(listings), len(urls))
        return listings

    async def collect_listing_urls(self) -> List[str]:
        """Walk the search pages and return unique listing URLs in discovery order."""
        self._require_context()
        seen = set()
        ordered = []
        for page_num in range(self.settings.max_pages):
            page_url = self.search_page_url(page_num)
            self.logger.info("Collecting listing URLs from page %d: %s", page_num + 1, page_url)
            result = await self.queue.submit(partial(self._fetch_search_page, page_url))
            if result is None:
                continue

            if result.no_results:
                self.logger.info("No more results available")
                break

            self.logger.info("Found %d listings on page %d", len(result.urls), page_num + 1)
            for url in result.urls:
                if url not in seen:
                    seen.add(url)
                    ordered.append(url)

            if len(result.urls) < self.settings.results_per_page:
                self.logger.info("Reached last page of results")
                break
        return ordered

    async def scrape_listing_page(self, url: str) -> Optional[ListingData]:
        """Fetch one detail page. Navigation and parse failures are logged and give None."""
        self.logger.info("Scraping listing: %s", url)
        # no page means no browser: let it propagate
        page = await self._open_page()
        try:
            await self._goto(page, url)
            html = await page.content()
            listing = parse_listing_page(
                html,
                url,
                thumbnail_token=self.settings.thumbnail_token,
                full_size_token=self.settings.full_size_token,
            )
            if listing is None:
                self.logger.info("Listing %s has been deleted or expired", url)
            return listing
        except Exception as e:
            self.logger.error("Error scraping listing %s: %s", url, e)
            return None
        finally:
            await self._close_page(page)

    async def _fetch_search_page(self, page_url: str) -> Optional[SearchPage]:
        page = await self._open_page()
        try:
            await self._goto(page, page_url)
            return parse_search_page(await page.content(), page_url)
        except Exception as e:
            self.logger.error("Error processing search results page %s: %s", page_url, e)
            return None
        finally:
            await self._close_page(page)

    async def _open_page(self):
        page = await self._require_context().new_page()
        try:
            page.set_default_navigation_timeout(self.settings.timeout * 1000)
            await page.route("**/*", _block_heavy_resources)
        except Exception:
            await self._close_page(page)
            raise
        return page

    async def _goto(self, page, url):
        await page.goto(url, timeout=self.settings.timeout * 1000, wait_until="networkidle")

    async def _close_page(self, page):
        try:
            await page.close()
        except Exception as e:
            self.logger.warning("Failed closing page: %s", e)

    def _require_context(self):
        if self._context is None:
            raise RuntimeError("Browser not initialized. Call initialize() first.")
        return self._context
