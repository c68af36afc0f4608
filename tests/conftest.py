# tests/conftest.py
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from antique_ingest.config import (
    DatabaseSettings,
    ImageSettings,
    OpenAISettings,
    ScraperSettings,
    Settings,
)
from antique_ingest.schemas import ListingData
from antique_ingest.services import ListingStore

SEARCH_URL = "https://newyork.craigslist.org/d/search/ata"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        scraper=ScraperSettings(results_per_page=2, max_pages=5, concurrency=3, delay_between_pages=0),
        images=ImageSettings(directory=str(tmp_path / "images"), interval_cap=None, interval=None),
        openai=OpenAISettings(api_key="test-key", base_url="https://llm.test/v1", retry_base_delay=0,
                              requests_per_minute=1000),
        database=DatabaseSettings(url="sqlite://"),
    )


@pytest.fixture
def store(settings):
    s = ListingStore.from_settings(settings.database)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def make_listing():
    def _make(url=None, **overrides):
        data = {
            "id": str(uuid.uuid4()),
            "url": url or f"https://newyork.craigslist.org/atq/d/{uuid.uuid4().hex[:8]}.html",
            "title": "Victorian oak chest",
            "price": 450.0,
            "description": "Solid oak, original brass hardware.",
            "location": "Brooklyn",
            "posted_date": datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
            "image_urls": [],
            "attributes": {"condition": "good"},
        }
        data.update(overrides)
        return ListingData(**data)
    return _make


def search_html(hrefs):
    items = "".join(f'<li class="result-row"><a class="result-title" href="{h}">item</a></li>' for h in hrefs)
    return f"<html><body><ul class='rows'>{items}</ul></body></html>"


NO_RESULTS_HTML = '<html><body><div class="alert alert-sm alert-warning">Nothing found</div></body></html>'


def listing_html(title="Oak chest", price="$1,250", thumbs=(), date="2024-01-15T10:30:00-05:00",
                 attrs=("condition: excellent", "delivery available"), removed=False):
    if removed:
        return '<html><body><div class="removed"><h2>This posting has been deleted by its author.</h2></div></body></html>'
    price_html = f'<span class="price">{price}</span>' if price is not None else ""
    date_html = f'<time class="date timeago" datetime="{date}">{date}</time>' if date is not None else ""
    thumbs_html = "".join(f'<a class="thumb" data-src="{t}"></a>' for t in thumbs)
    attrs_html = "".join(f"<span>{a}</span>" for a in attrs)
    return f"""
    <html><body>
      <h1><span id="titletextonly">{title}</span>{price_html}</h1>
      <div class="mapbox"><div class="mapaddress">Park Slope</div></div>
      <p class="postinginfo">posted: {date_html}</p>
      <div class="gallery">{thumbs_html}</div>
      <p class="attrgroup">{attrs_html}</p>
      <section id="postingbody">Lovely piece, some wear on the feet.</section>
    </body></html>
    """


class FakePage:
    def __init__(self, context):
        self.context = context
        self.url = None
        self.closed = False
        self.routes = []
        self.navigation_timeout = None

    def set_default_navigation_timeout(self, timeout):
        self.navigation_timeout = timeout

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def goto(self, url, timeout=None, wait_until=None):
        self.context.visits.append(url)
        body = self.context.site.get(url)
        if body is None:
            raise TimeoutError(f"Timeout navigating to {url}")
        if isinstance(body, Exception):
            raise body
        self.url = url

    async def content(self):
        return self.context.site[self.url]

    async def close(self):
        self.closed = True


class FakeContext:
    """Stands in for a Playwright BrowserContext serving canned HTML by URL."""

    def __init__(self, site, page_budget=None):
        self.site = site
        self.visits = []
        self.pages = []
        # pages that can be opened before the browser "crashes"
        self.page_budget = page_budget

    async def new_page(self):
        if self.page_budget is not None and len(self.pages) >= self.page_budget:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage(self)
        self.pages.append(page)
        return page


class FakeRoute:
    def __init__(self, resource_type):
        self.request = SimpleNamespace(resource_type=resource_type)
        self.action = None

    async def abort(self):
        self.action = "abort"

    async def continue_(self):
        self.action = "continue"
