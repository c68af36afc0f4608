# antique_ingest/crud.py
"""CRUD operations for listings, images and analyses.

Writes are idempotent upserts keyed on each table's natural key: a listing's
URL, an image's id, and an analysis' listing id.
"""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy import select, and_, func
from sqlalchemy.orm import Session, selectinload
from .models import Listing, Image, Analysis
from .schemas import ListingData, ImageData, AntiqueAnalysis
from typing import Dict, Any, Optional


def _insert(db: Session, table):
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert(table)
    return sqlite_insert(table)


def _upsert(db: Session, model, data: Dict[str, Any], conflict_key: str, immutable=("id", "created_at")):
    table = model.__table__
    stmt = _insert(db, table).values(**data)
    # copy all updatable columns from EXCLUDED, but override timestamps
    excluded = {
        c.name: stmt.excluded[c.name]
        for c in table.columns
        if c.name not in immutable and c.name != conflict_key and c.name in data
    }
    if "updated_at" in table.columns:
        excluded["updated_at"] = func.now()
    if excluded:
        stmt = stmt.on_conflict_do_update(index_elements=[conflict_key], set_=excluded)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=[conflict_key])
    db.execute(stmt)


def upsert_listing(db: Session, listing: ListingData) -> str:
    data = listing.model_dump(exclude={"image_urls"})
    _upsert(db, Listing, data, conflict_key="url")
    db.commit()
    # a URL seen in an earlier run keeps its first id
    return db.execute(select(Listing.id).where(Listing.url == listing.url)).scalar_one()


def save_image(db: Session, listing_id: str, image: ImageData) -> str:
    data = image.model_dump()
    data["listing_id"] = listing_id
    _upsert(db, Image, data, conflict_key="id")
    db.commit()
    return image.id


def save_analysis(db: Session, listing_id: str, analysis: AntiqueAnalysis) -> int:
    data = analysis.model_dump()
    data["listing_id"] = listing_id
    _upsert(db, Analysis, data, conflict_key="listing_id")
    db.commit()
    return db.execute(select(Analysis.id).where(Analysis.listing_id == listing_id)).scalar_one()


def get_listing(db: Session, listing_id: str):
    return db.query(Listing).filter(Listing.id == listing_id).first()


def get_listing_with_details(db: Session, listing_id: str) -> Optional[Listing]:
    return (
        db.query(Listing)
        .options(selectinload(Listing.images), selectinload(Listing.analysis))
        .filter(Listing.id == listing_id)
        .first()
    )


def search_listings(db: Session, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Listing)
    if filters:
        conds = []
        if filters.get("title"):
            conds.append(Listing.title.ilike(f"%{filters['title']}%"))
        if filters.get("min_price") is not None:
            conds.append(Listing.price >= filters["min_price"])
        if filters.get("max_price") is not None:
            conds.append(Listing.price <= filters["max_price"])
        if filters.get("location"):
            conds.append(Listing.location.ilike(f"%{filters['location']}%"))
        if filters.get("from_date") is not None:
            conds.append(Listing.posted_date >= filters["from_date"])
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Listing.posted_date.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": items}


def get_stats(db: Session) -> Dict[str, Any]:
    priced = select(
        func.avg(Listing.price), func.max(Listing.price), func.min(Listing.price)
    ).where(Listing.price.isnot(None))
    average, maximum, minimum = db.execute(priced).one()
    return {
        "listing_count": db.scalar(select(func.count()).select_from(Listing)),
        "image_count": db.scalar(select(func.count()).select_from(Image)),
        "analysis_count": db.scalar(select(func.count()).select_from(Analysis)),
        "pricing": {"average": average, "maximum": maximum, "minimum": minimum},
    }


def delete_listing(db: Session, listing_id: str):
    obj = db.query(Listing).filter(Listing.id == listing_id).first()
    if not obj:
        return False
    db.delete(obj)
    db.commit()
    return True
