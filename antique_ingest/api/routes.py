# antique_ingest/api/routes.py
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import List
from .. import schemas
from ..services import ListingStore

router = APIRouter()


def get_store(request: Request) -> ListingStore:
    return request.app.state.store


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/listings", response_model=List[schemas.ListingOut])
def listings(
    skip: int = 0,
    limit: int = Query(50, le=500),
    title: str | None = Query(None),
    min_price: float | None = Query(None),
    max_price: float | None = Query(None),
    location: str | None = Query(None),
    from_date: datetime | None = Query(None),
    store: ListingStore = Depends(get_store),
):
    filters = schemas.ListingFilter(
        title=title,
        min_price=min_price,
        max_price=max_price,
        location=location,
        from_date=from_date,
    )
    return store.search_listings(filters.model_dump(), skip=skip, limit=limit)


@router.get("/listings/{listing_id}", response_model=schemas.ListingDetail)
def get_listing(listing_id: str, store: ListingStore = Depends(get_store)):
    obj = store.get_listing_with_details(listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.delete("/listings/{listing_id}")
def delete_listing(listing_id: str, store: ListingStore = Depends(get_store)):
    if not store.delete_listing(listing_id):
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"status": "deleted"}


@router.get("/stats", response_model=schemas.StatsOut)
def stats(store: ListingStore = Depends(get_store)):
    return store.get_stats()
