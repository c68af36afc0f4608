# antique_ingest/models.py
"""SQLAlchemy ORM models for listings, their downloaded images and analyses.

Images and analyses hang off a listing and are removed with it, both through
the `ON DELETE CASCADE` foreign keys and the ORM relationships.
"""
from sqlalchemy import Column, Integer, Text, Numeric, Float, JSON, TIMESTAMP, ForeignKey, func, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .db import Base


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Text, primary_key=True)
    url = Column(Text, nullable=False, unique=True, index=True)
    title = Column(Text, nullable=False, default="")
    price = Column(Numeric(asdecimal=False))
    description = Column(Text)
    location = Column(Text)
    posted_date = Column(TIMESTAMP(timezone=True), nullable=False)
    attributes = Column(JSON().with_variant(JSONB, "postgresql"))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    images = relationship("Image", back_populates="listing", cascade="all, delete-orphan", passive_deletes=True)
    analysis = relationship(
        "Analysis", back_populates="listing", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )


class Image(Base):
    __tablename__ = "images"
    id = Column(Text, primary_key=True)
    listing_id = Column(Text, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    filename = Column(Text, nullable=False)
    original_url = Column(Text, nullable=False)
    local_path = Column(Text, nullable=False)
    content_type = Column(Text)
    size = Column(Integer)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    listing = relationship("Listing", back_populates="images")


class Analysis(Base):
    __tablename__ = "analyses"
    id = Column(Integer, primary_key=True, autoincrement=True)
    listing_id = Column(Text, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, unique=True)
    market_value = Column(Float)
    pricing_assessment = Column(Text)
    pricing_confidence = Column(Float)
    authenticity_score = Column(Float)
    authenticity_tips = Column(Text)
    historical_context = Column(Text)
    additional_notes = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    listing = relationship("Listing", back_populates="analysis")

Index("idx_listings_posted_date", Listing.posted_date)
Index("idx_listings_price", Listing.price)
Index("idx_images_listing_id", Image.listing_id)
