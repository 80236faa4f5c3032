"""Sort taxonomy: user-facing sort keys to (column, direction)."""

from types import MappingProxyType
from typing import NamedTuple

from .schemas import SortDirection


class SortOrder(NamedTuple):
    column: str
    direction: SortDirection


SORT_ORDERS = MappingProxyType({
    "price_asc": SortOrder("list_price", SortDirection.ASC),
    "price_desc": SortOrder("list_price", SortDirection.DESC),
    "list_date_asc": SortOrder("listing_contract_date", SortDirection.ASC),
    "list_date_desc": SortOrder("listing_contract_date", SortDirection.DESC),
    "beds_desc": SortOrder("bedrooms_total", SortDirection.DESC),
    "sqft_desc": SortOrder("living_area", SortDirection.DESC),
    "dom_asc": SortOrder("days_on_market", SortDirection.ASC),
    "dom_desc": SortOrder("days_on_market", SortDirection.DESC),
})

DEFAULT_SORT = SORT_ORDERS["list_date_desc"]


class SortResolver:
    """Exact, case-insensitive lookup. Anything unknown gets the default."""

    def resolve(self, sort: str | None) -> SortOrder:
        if not isinstance(sort, str) or not sort.strip():
            return DEFAULT_SORT
        return SORT_ORDERS.get(sort.strip().lower(), DEFAULT_SORT)
