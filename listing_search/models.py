"""SQLAlchemy models for the listing search tables.

Data Architecture Overview:
- Listing is the single wide table populated by the MLS extraction pipeline
- Active and archived (sold) listings share the table, split by is_archived
- OpenHouse rows hang off a listing via listing_key

Key Concepts:
- listing_key: MLS-internal primary key, stable across status changes
- listing_id: the public MLS number users type into the search box
- coordinates: PostGIS POINT(lng lat) used by the spatial filters
- Exclusive listings: entered in-house with a numeric listing_id below
  EXCLUSIVE_LISTING_WATERMARK (see is_exclusive_listing_id in schemas.py)
"""

from datetime import date, datetime
from decimal import Decimal

from geoalchemy2 import Geometry
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .schemas import is_exclusive_listing_id


class Listing(Base):
    """A property listing (active or archived) from the MLS feed."""

    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    listing_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Status
    standard_status: Mapped[str | None] = mapped_column(String(50))
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    listing_contract_date: Mapped[date | None] = mapped_column(Date)
    days_on_market: Mapped[int | None] = mapped_column(Integer)
    modification_timestamp: Mapped[datetime | None] = mapped_column(DateTime)

    # Classification
    property_type: Mapped[str | None] = mapped_column(String(50))
    property_sub_type: Mapped[str | None] = mapped_column(String(50))

    # Price
    list_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    original_list_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    close_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))

    # Rooms and size
    bedrooms_total: Mapped[int | None] = mapped_column(Integer)
    bathrooms_total: Mapped[int | None] = mapped_column(Integer)
    living_area: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    lot_size_acres: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    year_built: Mapped[int | None] = mapped_column(Integer)

    # Parking and amenities
    garage_spaces: Mapped[int | None] = mapped_column(Integer)
    parking_total: Mapped[int | None] = mapped_column(Integer)
    fireplaces_total: Mapped[int | None] = mapped_column(Integer)
    virtual_tour_url_unbranded: Mapped[str | None] = mapped_column(String(255))
    main_photo_url: Mapped[str | None] = mapped_column(String(512))

    # Location
    unparsed_address: Mapped[str | None] = mapped_column(String(255))
    street_number: Mapped[str | None] = mapped_column(String(50))
    street_name: Mapped[str | None] = mapped_column(String(100))
    unit_number: Mapped[str | None] = mapped_column(String(30))
    city: Mapped[str | None] = mapped_column(String(100))
    state_or_province: Mapped[str | None] = mapped_column(String(50))
    postal_code: Mapped[str | None] = mapped_column(String(20))
    subdivision_name: Mapped[str | None] = mapped_column(String(100))
    mls_area_major: Mapped[str | None] = mapped_column(String(100))
    mls_area_minor: Mapped[str | None] = mapped_column(String(100))
    school_district: Mapped[str | None] = mapped_column(String(100))
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 8))
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(11, 8))
    coordinates: Mapped[str | None] = mapped_column(
        Geometry("POINT", srid=4326),
        doc="POINT(longitude latitude). Backfilled from latitude/longitude by the extractor."
    )

    public_remarks: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("ix_listings_status_archived", "is_archived", "standard_status"),
        Index("ix_listings_city", "city"),
        Index("ix_listings_postal_code", "postal_code"),
        Index("ix_listings_list_price", "list_price"),
        Index("ix_listings_contract_date", "listing_contract_date"),
    )

    @property
    def is_exclusive(self) -> bool:
        """True for in-house listings that never went through the MLS."""
        return is_exclusive_listing_id(self.listing_id)

    def __repr__(self) -> str:
        return f"<Listing {self.listing_id}: {self.unparsed_address}>"


class OpenHouse(Base):
    """A scheduled open house for a listing."""

    __tablename__ = "open_houses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    open_house_key: Mapped[str | None] = mapped_column(String(128))
    open_house_date: Mapped[date | None] = mapped_column(Date, index=True)
    open_house_type: Mapped[str | None] = mapped_column(String(50))
    open_house_remarks: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<OpenHouse {self.listing_key} {self.open_house_date}>"
