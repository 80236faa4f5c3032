"""Filter compiler: raw search parameters to a declarative listing predicate.

Takes the flat, untrusted parameter mapping of a search request and produces a
FilterResult: one predicate tree, one sort order, and what the query executor
needs to know about school criteria (which no listing column can express).

Compilation order:
1. Direct lookup (mls_number / address) short-circuits everything else.
2. Status, defaulting to Active.
3. Facets: location, classification, price, rooms, size, time, parking,
   amenities, special.
4. Spatial bounds / polygon, delegated to the geocoding collaborator.
5. School criteria, captured verbatim for post-filtering.
6. Sort order.

The compiler is pure: no I/O, no clock, no shared mutable state.
"""

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .predicates import (
    AllOf,
    AnyOf,
    ColumnGreaterThan,
    Equals,
    ExclusiveListing,
    GreaterThan,
    InList,
    Like,
    ListedWithin,
    NotNull,
    Predicate,
    Range,
    UpcomingOpenHouse,
)
from .sorting import DEFAULT_SORT, SortOrder, SortResolver
from .spatial import SpatialService
from .status import StatusResolver

logger = logging.getLogger(__name__)

# Applied when school criteria force post-filtering of fetched rows
SCHOOL_OVERFETCH_MULTIPLIER = 10

# Lot sizes above this are taken to be square feet, at or below it acres
LOT_SIZE_SQFT_THRESHOLD = 100
SQFT_PER_ACRE = 43_560.0

# School keys outside the school_* prefix
SCHOOL_KEYS = frozenset({"elementary_school", "middle_school", "high_school"})

# Column that holds the PostGIS point
COORDINATES_COLUMN = "coordinates"

FALSE_STRINGS = frozenset({"", "0", "false", "no", "off", "n"})


class FilterValidationError(ValueError):
    """A structurally malformed filter value (bad polygon, bad bounds)."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


@dataclass(frozen=True)
class FilterResult:
    """Output of FilterCompiler.compile. Built once per request, never mutated."""

    predicate: AllOf
    order_by: SortOrder = DEFAULT_SORT
    is_direct_lookup: bool = False
    has_school_filters: bool = False
    school_criteria: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    overfetch_multiplier: int = 1


# =============================================================================
# Scalar coercion (never raises; inputs come straight from query strings)
# =============================================================================


def parse_number(value: Any) -> float | None:
    """Number from an int, float or numeric string; None for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").lstrip("$")
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_flag(value: Any) -> bool:
    """Truthiness of a checkbox-style parameter ("1", "true", "on", True...)."""
    if isinstance(value, str):
        return value.strip().lower() not in FALSE_STRINGS
    return bool(value)


def parse_text(value: Any) -> str | None:
    """Trimmed non-empty text, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def split_values(value: Any) -> tuple[str, ...]:
    """Comma-separated string or list to unique, trimmed, non-empty values."""
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = [str(item) for item in value if item is not None]
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parts = [str(value)]
    else:
        return ()

    seen: list[str] = []
    for part in parts:
        part = part.strip()
        if part and part not in seen:
            seen.append(part)
    return tuple(seen)


def normalize_lot_size(value: float) -> float:
    """Acres from a user value that may be acres or square feet."""
    if value > LOT_SIZE_SQFT_THRESHOLD:
        return value / SQFT_PER_ACRE
    return value


def is_school_key(key: str) -> bool:
    return key.startswith("school_") or key in SCHOOL_KEYS


# =============================================================================
# Compiler
# =============================================================================


class FilterCompiler:
    """Compiles raw search parameters into a FilterResult.

    Stateless apart from its collaborators, which are themselves pure, so one
    instance can serve concurrent requests.
    """

    def __init__(
        self,
        geocoding: SpatialService | None = None,
        status_resolver: StatusResolver | None = None,
        sort_resolver: SortResolver | None = None,
    ):
        self.geocoding = geocoding or SpatialService()
        self.status_resolver = status_resolver or StatusResolver()
        self.sort_resolver = sort_resolver or SortResolver()

    def compile(self, raw: Mapping[str, Any]) -> FilterResult:
        order_by = self.sort_resolver.resolve(parse_text(raw.get("sort")))

        lookup = self._direct_lookup(raw)
        if lookup:
            logger.debug("Direct lookup, skipping faceted filters")
            return FilterResult(
                predicate=AllOf(tuple(lookup)),
                order_by=order_by,
                is_direct_lookup=True,
            )

        conditions: list[Predicate] = [self.status_resolver.resolve(raw.get("status"))]
        conditions += self._location(raw)
        conditions += self._classification(raw)
        conditions += self._price(raw)
        conditions += self._rooms(raw)
        conditions += self._size(raw)
        conditions += self._time(raw)
        conditions += self._parking(raw)
        conditions += self._amenities(raw)
        conditions += self._special(raw)
        conditions += self._spatial(raw)

        school_criteria = self._school_criteria(raw)
        has_school_filters = bool(school_criteria)

        logger.debug(
            f"Compiled {len(conditions)} conditions"
            + (f", school criteria {sorted(school_criteria)}" if has_school_filters else "")
        )

        return FilterResult(
            predicate=AllOf(tuple(conditions)),
            order_by=order_by,
            is_direct_lookup=False,
            has_school_filters=has_school_filters,
            school_criteria=MappingProxyType(school_criteria),
            overfetch_multiplier=SCHOOL_OVERFETCH_MULTIPLIER if has_school_filters else 1,
        )

    # -------------------------------------------------------------------------
    # Direct lookup
    # -------------------------------------------------------------------------

    def _direct_lookup(self, raw: Mapping[str, Any]) -> list[Predicate]:
        """Identity conditions; searches active and archived listings alike."""
        conditions: list[Predicate] = []

        mls_number = parse_text(raw.get("mls_number"))
        if mls_number:
            conditions.append(Equals("listing_id", mls_number))

        address = parse_text(raw.get("address"))
        if address:
            conditions.append(Like("unparsed_address", address))

        return conditions

    # -------------------------------------------------------------------------
    # Facets
    # -------------------------------------------------------------------------

    def _location(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions: list[Predicate] = []

        cities = split_values(raw.get("city"))
        if cities:
            conditions.append(InList("city", cities))

        zips = split_values(raw.get("zip"))
        if zips:
            conditions.append(InList("postal_code", zips))

        neighborhood = parse_text(raw.get("neighborhood"))
        if neighborhood:
            conditions.append(AnyOf((
                Equals("subdivision_name", neighborhood),
                Equals("mls_area_major", neighborhood),
                Equals("mls_area_minor", neighborhood),
            )))

        street_name = parse_text(raw.get("street_name"))
        if street_name:
            conditions.append(Like("street_name", street_name))

        return conditions

    def _classification(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions: list[Predicate] = []

        property_type = parse_text(raw.get("property_type"))
        if property_type:
            conditions.append(Equals("property_type", property_type))

        sub_types = split_values(raw.get("property_sub_type"))
        if len(sub_types) == 1:
            conditions.append(Equals("property_sub_type", sub_types[0]))
        elif sub_types:
            conditions.append(InList("property_sub_type", sub_types))

        return conditions

    def _price(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions = self._bounds(raw, "list_price", minimum_key="min_price", maximum_key="max_price")
        if parse_flag(raw.get("price_reduced")):
            conditions.append(ColumnGreaterThan("original_list_price", "list_price"))
        return conditions

    def _rooms(self, raw: Mapping[str, Any]) -> list[Predicate]:
        return (
            self._bounds(raw, "bedrooms_total", minimum_key="beds")
            + self._bounds(raw, "bathrooms_total", minimum_key="baths")
        )

    def _size(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions = self._bounds(raw, "living_area", minimum_key="sqft_min", maximum_key="sqft_max")

        lot_min = self._number(raw, "lot_size_min")
        if lot_min:
            conditions.append(Range("lot_size_acres", minimum=normalize_lot_size(lot_min)))

        lot_max = self._number(raw, "lot_size_max")
        if lot_max:
            conditions.append(Range("lot_size_acres", maximum=normalize_lot_size(lot_max)))

        return conditions

    def _time(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions = self._bounds(
            raw, "year_built", minimum_key="year_built_min", maximum_key="year_built_max"
        )
        conditions += self._bounds(raw, "days_on_market", minimum_key="min_dom", maximum_key="max_dom")

        days = self._number(raw, "new_listing_days")
        if days:
            conditions.append(ListedWithin("listing_contract_date", int(days)))

        return conditions

    def _parking(self, raw: Mapping[str, Any]) -> list[Predicate]:
        return (
            self._bounds(raw, "garage_spaces", minimum_key="garage_spaces_min")
            + self._bounds(raw, "parking_total", minimum_key="parking_total_min")
        )

    def _amenities(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions: list[Predicate] = []
        if parse_flag(raw.get("has_virtual_tour")):
            conditions.append(NotNull("virtual_tour_url_unbranded"))
        if parse_flag(raw.get("has_garage")):
            conditions.append(GreaterThan("garage_spaces", 0))
        if parse_flag(raw.get("has_fireplace")):
            conditions.append(GreaterThan("fireplaces_total", 0))
        return conditions

    def _special(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions: list[Predicate] = []
        if parse_flag(raw.get("open_house_only")):
            conditions.append(UpcomingOpenHouse())
        if parse_flag(raw.get("exclusive_only")):
            conditions.append(ExclusiveListing("listing_id"))
        return conditions

    # -------------------------------------------------------------------------
    # Spatial
    # -------------------------------------------------------------------------

    def _spatial(self, raw: Mapping[str, Any]) -> list[Predicate]:
        conditions: list[Predicate] = []

        bounds = raw.get("bounds")
        if bounds not in (None, "", [], ()):
            south, west, north, east = self._parse_bounds(bounds)
            conditions.append(self.geocoding.build_spatial_bounds_condition(
                north, south, east, west, COORDINATES_COLUMN
            ))

        polygon = raw.get("polygon")
        if polygon not in (None, "", [], ()):
            vertices = self._parse_polygon(polygon)
            conditions.append(self.geocoding.build_spatial_polygon_condition(
                vertices, COORDINATES_COLUMN
            ))

        return conditions

    def _parse_bounds(self, value: Any) -> tuple[float, float, float, float]:
        """"south,west,north,east" (or a 4-item list) to floats."""
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",")]
        elif isinstance(value, (list, tuple)):
            parts = list(value)
        else:
            raise FilterValidationError("bounds", "expected 'south,west,north,east'")

        if len(parts) != 4:
            raise FilterValidationError("bounds", f"expected 4 coordinates, got {len(parts)}")

        numbers = [parse_number(part) for part in parts]
        if any(number is None for number in numbers):
            raise FilterValidationError("bounds", "coordinates must be numeric")

        south, west, north, east = numbers
        if not (
            self.geocoding.validate_coordinates(south, west)
            and self.geocoding.validate_coordinates(north, east)
        ):
            raise FilterValidationError("bounds", "coordinates out of range")

        return south, west, north, east

    def _parse_polygon(self, value: Any) -> list[list[float]]:
        """JSON string or list of [lat, lng] vertices, validated."""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise FilterValidationError("polygon", f"invalid JSON ({e.msg})") from e

        if not self.geocoding.validate_polygon(value):
            raise FilterValidationError(
                "polygon", "expected at least 3 [lat, lng] vertices with valid coordinates"
            )

        return [[float(point[0]), float(point[1])] for point in value]

    # -------------------------------------------------------------------------
    # School criteria
    # -------------------------------------------------------------------------

    def _school_criteria(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """School keys and their raw values; listing columns cannot express them."""
        return {
            key: value
            for key, value in raw.items()
            if isinstance(key, str) and is_school_key(key) and value not in (None, "", [], ())
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _number(self, raw: Mapping[str, Any], key: str) -> float | None:
        value = raw.get(key)
        number = parse_number(value)
        if number is None and value not in (None, ""):
            logger.debug(f"Ignoring non-numeric {key}={value!r}")
        return number

    def _bounds(
        self,
        raw: Mapping[str, Any],
        column: str,
        minimum_key: str | None = None,
        maximum_key: str | None = None,
    ) -> list[Predicate]:
        """One inclusive Range per supplied bound; zero means not supplied.

        Values are truncated to whole numbers.
        """
        conditions: list[Predicate] = []
        if minimum_key:
            minimum = self._number(raw, minimum_key)
            if minimum:
                conditions.append(Range(column, minimum=int(minimum)))
        if maximum_key:
            maximum = self._number(raw, maximum_key)
            if maximum:
                conditions.append(Range(column, maximum=int(maximum)))
        return conditions
