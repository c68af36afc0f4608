# tests/test_pipeline.py
import asyncio
import json

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from antique_ingest.analysis import FALLBACK_TEXT, AnalysisClient
from antique_ingest.images import ImageDownloader
from antique_ingest.pipeline import AntiquePipeline, RunSummary
from antique_ingest.scrape import ListingFetcher
from conftest import FakeContext


class FakeFetcher:
    def __init__(self, listings):
        self.listings = listings
        self.initialized = False
        self.closed = False

    async def initialize(self):
        self.initialized = True

    async def collect(self):
        return list(self.listings)

    async def close(self):
        self.closed = True


class BrokenStore:
    """Store whose database has gone away."""

    def __init__(self):
        self.closed = False

    def initialize(self):
        pass

    def save_listing(self, listing):
        raise OperationalError("INSERT INTO listings", {}, Exception("database is locked"))

    def save_image(self, listing_id, image):
        raise AssertionError("should not be reached")

    def save_analysis(self, listing_id, analysis):
        raise AssertionError("should not be reached")

    def close(self):
        self.closed = True


def image_client():
    def handler(request):
        if "bad" in request.url.path:
            return httpx.Response(502)
        return httpx.Response(200, content=b"\xff\xd8" + b"0" * 64, headers={"content-type": "image/jpeg"})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def inference_client(settings, status_code=200, calls=None):
    payload = {
        "marketValue": "$1,250",
        "pricingAssessment": "overpriced",
        "pricingConfidence": 0.6,
        "authenticityScore": 0.4,
        "authenticityTips": "Check the joinery.",
        "historicalContext": "Mass-produced reproduction style.",
        "additionalNotes": "Ask for provenance.",
    }

    def handler(request):
        if calls is not None:
            calls.append(request)
        if status_code != 200:
            return httpx.Response(status_code)
        return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(payload)}}]})
    return httpx.AsyncClient(base_url=settings.openai.base_url, transport=httpx.MockTransport(handler))


def make_pipeline(settings, store, listings, inference_status=200, calls=None):
    downloader = ImageDownloader(settings.images, user_agent="test", referer="https://ny.test", client=image_client())
    analyzer = AnalysisClient(settings.openai, client=inference_client(settings, inference_status, calls))
    return AntiquePipeline(
        settings,
        store=store,
        fetcher=FakeFetcher(listings),
        downloader=downloader,
        analyzer=analyzer,
    )


def test_empty_search_yields_nothing(settings, store):
    calls = []
    pipeline = make_pipeline(settings, store, [], calls=calls)

    async def scenario():
        await pipeline.initialize()
        return await pipeline.run()

    summary = asyncio.run(scenario())

    assert summary == RunSummary()
    stats = store.get_stats()
    assert (stats.listing_count, stats.image_count, stats.analysis_count) == (0, 0, 0)
    assert calls == []


def test_one_failed_image_leaves_two_assets(settings, store, make_listing):
    listing = make_listing(image_urls=[
        "https://images.test/one_600x450.jpg",
        "https://images.test/bad_600x450.jpg",
        "https://images.test/three_600x450.jpg",
    ])
    pipeline = make_pipeline(settings, store, [listing])

    summary = asyncio.run(pipeline.run())

    assert summary == RunSummary(listings_collected=1, listings_saved=1, images_saved=2, analyses_saved=1)
    detail = store.get_listing_with_details(listing.id)
    assert len(detail.images) == 2
    assert {i.original_url for i in detail.images} == {listing.image_urls[0], listing.image_urls[2]}
    assert detail.analysis.market_value == 1250.0
    assert detail.analysis.pricing_assessment == "overpriced"


def test_listing_without_images_is_still_analyzed(settings, store, make_listing):
    listing = make_listing(image_urls=[])
    summary = asyncio.run(make_pipeline(settings, store, [listing]).run())
    assert summary.images_saved == 0
    assert summary.analyses_saved == 1


def test_failed_inference_saves_fallback(settings, store, make_listing):
    listing = make_listing()
    summary = asyncio.run(make_pipeline(settings, store, [listing], inference_status=500).run())

    assert summary.analyses_saved == 1
    analysis = store.get_listing_with_details(listing.id).analysis
    assert analysis.pricing_assessment == "fair"
    assert analysis.pricing_confidence == 0
    assert analysis.authenticity_tips == FALLBACK_TEXT


def test_rerun_reuses_stored_listing_id(settings, store, make_listing):
    url = "https://newyork.craigslist.org/atq/d/chest/1.html"
    first = make_listing(url=url)
    second = make_listing(url=url, title="Victorian oak chest, reduced")

    asyncio.run(make_pipeline(settings, store, [first]).run())
    asyncio.run(make_pipeline(settings, store, [second]).run())

    stats = store.get_stats()
    assert stats.listing_count == 1
    assert stats.analysis_count == 1
    assert store.get_listing_with_details(first.id).title == "Victorian oak chest, reduced"
    assert store.get_listing_with_details(second.id) is None


def test_storage_failure_aborts_run(settings, make_listing):
    store = BrokenStore()
    calls = []
    pipeline = make_pipeline(settings, store, [make_listing(image_urls=["https://images.test/one.jpg"])], calls=calls)

    with pytest.raises(OperationalError):
        asyncio.run(pipeline.run())
    assert calls == []


def test_close_releases_everything(settings, store):
    pipeline = make_pipeline(settings, store, [])

    async def scenario():
        async with pipeline:
            pass

    asyncio.run(scenario())
    assert pipeline.fetcher.initialized
    assert pipeline.fetcher.closed


class CrashedFetcher(FakeFetcher):
    async def close(self):
        raise RuntimeError("Browser has been closed")


def test_dead_browser_aborts_run(settings, store):
    calls = []
    pipeline = make_pipeline(settings, store, [], calls=calls)
    pipeline.fetcher = ListingFetcher(settings.scraper, context=FakeContext({}, page_budget=0))

    with pytest.raises(RuntimeError, match="has been closed"):
        asyncio.run(pipeline.run())
    assert store.get_stats().listing_count == 0
    assert calls == []


def test_failing_fetcher_close_still_closes_clients(settings, store):
    pipeline = make_pipeline(settings, store, [])
    pipeline.fetcher = CrashedFetcher([])

    with pytest.raises(RuntimeError, match="Browser has been closed"):
        asyncio.run(pipeline.close())
    assert pipeline.downloader._client.is_closed
    assert pipeline.analyzer._client.is_closed
