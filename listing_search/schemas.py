"""Pydantic schemas and canonical value sets for listing search.

The enums here are the vocabulary shared by the resolvers, the compiler and
the query layer. Response models describe what the search API returns.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Raw, untrusted search parameters exactly as they arrive from the request
RawFilterInput = dict[str, Any]


# =============================================================================
# ENUMS: Canonical value sets
# =============================================================================


class SortDirection(str, Enum):
    """SQL ordering direction."""

    ASC = "ASC"
    DESC = "DESC"


class StandardStatus(str, Enum):
    """RESO standard_status values stored on the listing table.

    Only the values the search taxonomy refers to are listed.
    """

    ACTIVE = "Active"
    PENDING = "Pending"
    ACTIVE_UNDER_CONTRACT = "Active Under Contract"
    CLOSED = "Closed"


# =============================================================================
# EXCLUSIVE LISTINGS
# =============================================================================

# Listings entered in-house get sequential numeric ids starting at 1.
# MLS-assigned numbers are all above this value.
EXCLUSIVE_LISTING_WATERMARK = 1_000_000


def is_exclusive_listing_id(listing_id: str | int | None) -> bool:
    """True when the id is all ASCII digits and its value is below the exclusive watermark.

    Matches the SQL check in query.py: leading zeros are allowed, surrounding
    whitespace is not.
    """
    if listing_id is None:
        return False
    text = str(listing_id)
    if not text.isascii() or not text.isdigit():
        return False
    significant = text.lstrip("0")
    # Too wide for a BIGINT; far above the watermark either way
    if len(significant) > 18:
        return False
    return int(significant or "0") < EXCLUSIVE_LISTING_WATERMARK


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class ListingSummary(BaseModel):
    """One row of a search results page."""

    model_config = ConfigDict(from_attributes=True)

    listing_key: str
    listing_id: str
    unparsed_address: str | None = None
    city: str | None = None
    state_or_province: str | None = None
    postal_code: str | None = None
    standard_status: str | None = None
    is_archived: bool = False
    list_price: Decimal | None = None
    original_list_price: Decimal | None = None
    bedrooms_total: int | None = None
    bathrooms_total: int | None = None
    living_area: Decimal | None = None
    lot_size_acres: Decimal | None = None
    year_built: int | None = None
    property_type: str | None = None
    property_sub_type: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    listing_contract_date: date | None = None
    days_on_market: int | None = None
    main_photo_url: str | None = None
    is_exclusive: bool = Field(
        default=False,
        description="Entered in-house rather than syndicated from the MLS"
    )


class SearchPage(BaseModel):
    """A page of search results."""

    data: list[ListingSummary]
    total: int = Field(description="Total matching listings across all pages")
    page: int = Field(ge=1)
    per_page: int = Field(ge=1)
