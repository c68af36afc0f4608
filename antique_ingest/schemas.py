# antique_ingest/schemas.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime

# Untyped key/value data straight off a page or an inference response.
# Only the validators in `analysis` and the parsers in `scrape` read it.
RawPayload = Dict[str, Any]

PricingAssessment = Literal["underpriced", "overpriced", "fair"]


class ListingData(BaseModel):
    id: str
    url: str
    title: str = ""
    price: Optional[float] = None
    description: str = ""
    location: str = ""
    posted_date: datetime
    image_urls: List[str] = Field(default_factory=list)
    attributes: Dict[str, Union[bool, str]] = Field(default_factory=dict)


class ImageData(BaseModel):
    id: str
    listing_id: str
    filename: str
    original_url: str
    local_path: str
    content_type: str = "image/jpeg"
    size: int = 0


class AntiqueAnalysis(BaseModel):
    market_value: float = 0.0
    pricing_assessment: PricingAssessment = "fair"
    pricing_confidence: float = Field(0.0, ge=0.0, le=1.0)
    authenticity_score: float = Field(0.0, ge=0.0, le=1.0)
    authenticity_tips: str
    historical_context: str
    additional_notes: str


class ImageOut(BaseModel):
    id: str
    filename: str
    original_url: str
    local_path: str
    content_type: Optional[str] = None
    size: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AnalysisOut(BaseModel):
    market_value: Optional[float] = None
    pricing_assessment: Optional[str] = None
    pricing_confidence: Optional[float] = None
    authenticity_score: Optional[float] = None
    authenticity_tips: Optional[str] = None
    historical_context: Optional[str] = None
    additional_notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ListingOut(BaseModel):
    id: str
    url: str
    title: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    location: Optional[str] = None
    posted_date: Optional[datetime] = None
    attributes: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ListingDetail(ListingOut):
    images: List[ImageOut] = Field(default_factory=list)
    analysis: Optional[AnalysisOut] = None


class ListingFilter(BaseModel):
    title: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    location: Optional[str] = None
    from_date: Optional[datetime] = None


class PriceStats(BaseModel):
    average: Optional[float] = None
    maximum: Optional[float] = None
    minimum: Optional[float] = None


class StatsOut(BaseModel):
    listing_count: int
    image_count: int
    analysis_count: int
    pricing: PriceStats
