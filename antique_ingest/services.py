# antique_ingest/services.py
from contextlib import contextmanager
from typing import Dict, Optional

from . import crud, models, schemas  # noqa: F401 models must be imported so tables are known
from .db import Base, make_engine, make_session_factory
from .utils import get_logger


class ListingStore:
    """Storage interface used by the pipeline and the API.

    Every call runs in its own session and commits before returning. Errors
    are logged and re-raised: a failing store is fatal to the caller.
    """

    def __init__(self, engine, logger=None):
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self.logger = logger or get_logger("ListingStore")

    @classmethod
    def from_settings(cls, settings, logger=None):
        return cls(make_engine(settings), logger=logger)

    def initialize(self):
        self.logger.info("Initializing database at %s", self.engine.url.render_as_string(hide_password=True))
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self):
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save_listing(self, listing: schemas.ListingData) -> str:
        self.logger.info("Saving listing: %s", listing.title)
        try:
            with self.session() as db:
                return crud.upsert_listing(db, listing)
        except Exception:
            self.logger.exception("Error saving listing: %s", listing.url)
            raise

    def save_image(self, listing_id: str, image: schemas.ImageData) -> str:
        try:
            with self.session() as db:
                return crud.save_image(db, listing_id, image)
        except Exception:
            self.logger.exception("Error saving image for listing %s", listing_id)
            raise

    def save_analysis(self, listing_id: str, analysis: schemas.AntiqueAnalysis) -> int:
        self.logger.info("Saving analysis for listing: %s", listing_id)
        try:
            with self.session() as db:
                return crud.save_analysis(db, listing_id, analysis)
        except Exception:
            self.logger.exception("Error saving analysis for listing %s", listing_id)
            raise

    def get_listing_with_details(self, listing_id: str) -> Optional[schemas.ListingDetail]:
        with self.session() as db:
            obj = crud.get_listing_with_details(db, listing_id)
            return schemas.ListingDetail.model_validate(obj) if obj else None

    def search_listings(self, filters: Dict = None, skip: int = 0, limit: int = 50):
        with self.session() as db:
            res = crud.search_listings(db, skip=skip, limit=limit, filters=filters)
            return [schemas.ListingOut.model_validate(obj) for obj in res["items"]]

    def get_stats(self) -> schemas.StatsOut:
        with self.session() as db:
            return schemas.StatsOut(**crud.get_stats(db))

    def delete_listing(self, listing_id: str) -> bool:
        with self.session() as db:
            return crud.delete_listing(db, listing_id)

    def close(self):
        self.logger.info("Closing database connection")
        self.engine.dispose()
