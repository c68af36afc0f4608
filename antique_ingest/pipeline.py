# antique_ingest/pipeline.py
"""End-to-end run: collect -> save listing -> images -> analysis.

Each stage absorbs its own per-item failures. A storage error is fatal: it is
logged and re-raised, which aborts the run.
"""
import os
from dataclasses import dataclass
from typing import Optional

from .analysis import AnalysisClient
from .config import Settings, load_settings
from .images import ImageDownloader
from .scrape import ListingFetcher
from .services import ListingStore
from .utils import configure_logging, get_logger


@dataclass
class RunSummary:
    listings_collected: int = 0
    listings_saved: int = 0
    images_saved: int = 0
    analyses_saved: int = 0


class AntiquePipeline:
    def __init__(
        self,
        settings: Settings,
        store: Optional[ListingStore] = None,
        fetcher: Optional[ListingFetcher] = None,
        downloader: Optional[ImageDownloader] = None,
        analyzer: Optional[AnalysisClient] = None,
        logger=None,
    ):
        self.settings = settings
        self.logger = logger or get_logger("AntiquePipeline")
        self.store = store or ListingStore.from_settings(settings.database)
        self.fetcher = fetcher or ListingFetcher(settings.scraper)
        self.downloader = downloader or ImageDownloader(
            settings.images,
            user_agent=settings.scraper.user_agent,
            referer=settings.scraper.base_url,
        )
        self.analyzer = analyzer or AnalysisClient(settings.openai)

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self):
        self.logger.info("Initializing application")
        os.makedirs(self.settings.images.directory, exist_ok=True)
        self.store.initialize()
        await self.fetcher.initialize()
        self.logger.info("Initialization complete")

    async def run(self) -> RunSummary:
        summary = RunSummary()
        self.logger.info("Starting antique listing collection")
        listings = await self.fetcher.collect()
        summary.listings_collected = len(listings)
        self.logger.info("Collected %d listings", len(listings))

        for listing in listings:
            try:
                listing_id = self.store.save_listing(listing)
            except Exception:
                self.logger.error("Aborting run: could not save listing %s", listing.url)
                raise
            summary.listings_saved += 1

            if listing.image_urls:
                images = await self.downloader.download_all(listing.image_urls, listing_id)
                for image in images:
                    self.store.save_image(listing_id, image)
                    summary.images_saved += 1

            analysis = await self.analyzer.analyze_antique(listing)
            self.store.save_analysis(listing_id, analysis)
            summary.analyses_saved += 1

        self.logger.info(
            "Processing complete: %d listings, %d images, %d analyses",
            summary.listings_saved, summary.images_saved, summary.analyses_saved,
        )
        return summary

    async def close(self):
        """Release every resource, then re-raise the first close error."""
        self.logger.info("Cleaning up resources")
        errors = []
        closers = (
            ("browser", self.fetcher.close),
            ("image client", self.downloader.close),
            ("inference client", self.analyzer.close),
        )
        for name, closer in closers:
            try:
                await closer()
            except Exception as e:
                self.logger.error("Error closing %s: %s", name, e)
                errors.append(e)
        try:
            self.store.close()
        except Exception as e:
            self.logger.error("Error closing store: %s", e)
            errors.append(e)
        if errors:
            raise errors[0]
        self.logger.info("Cleanup complete")


async def main(settings: Optional[Settings] = None) -> int:
    settings = settings or load_settings()
    configure_logging(settings.logging)
    logger = get_logger("main")
    pipeline = AntiquePipeline(settings)
    try:
        await pipeline.initialize()
        summary = await pipeline.run()
        logger.info("Run finished: %s", summary)
        return 0
    except Exception:
        logger.exception("Fatal error")
        return 1
    finally:
        try:
            await pipeline.close()
        except Exception:
            logger.exception("Error during cleanup")
