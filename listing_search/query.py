"""Render compiled predicates into SQLAlchemy statements over the listings table.

Every value in a predicate tree becomes a bound parameter here; column names
are resolved against the Listing model and never interpolated.
"""

from datetime import date, timedelta

from sqlalchemy import (
    BigInteger,
    ColumnElement,
    Select,
    and_,
    case,
    cast,
    false,
    func,
    or_,
    select,
    text,
    true,
)
from sqlalchemy.orm import InstrumentedAttribute

from .compiler import FilterResult
from .models import Listing, OpenHouse
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
    Raw,
    UpcomingOpenHouse,
)
from .schemas import EXCLUSIVE_LISTING_WATERMARK, SortDirection
from .sorting import SortOrder

# Longest digit string that still fits a BIGINT
_MAX_BIGINT_DIGITS = 18


class UnknownColumnError(ValueError):
    """A predicate names a column the listings table does not have."""


def listing_column(name: str) -> InstrumentedAttribute:
    if name not in Listing.__table__.columns:
        raise UnknownColumnError(f"listings has no column {name!r}")
    return getattr(Listing, name)


def escape_like(term: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so user text matches literally."""
    return (
        term.replace(escape, escape * 2)
        .replace("%", f"{escape}%")
        .replace("_", f"{escape}_")
    )


def render_predicate(predicate: Predicate, today: date | None = None) -> ColumnElement[bool]:
    """SQLAlchemy boolean expression for a predicate tree.

    `today` anchors relative-date predicates (ListedWithin); defaults to the
    current date.
    """
    if isinstance(predicate, AllOf):
        if not predicate.children:
            return true()
        return and_(*(render_predicate(child, today) for child in predicate.children))

    if isinstance(predicate, AnyOf):
        if not predicate.children:
            return false()
        return or_(*(render_predicate(child, today) for child in predicate.children))

    if isinstance(predicate, Equals):
        return listing_column(predicate.column) == predicate.value

    if isinstance(predicate, InList):
        return listing_column(predicate.column).in_(list(predicate.values))

    if isinstance(predicate, Range):
        column = listing_column(predicate.column)
        bounds = []
        if predicate.minimum is not None:
            bounds.append(column >= predicate.minimum)
        if predicate.maximum is not None:
            bounds.append(column <= predicate.maximum)
        return and_(*bounds) if bounds else true()

    if isinstance(predicate, GreaterThan):
        return listing_column(predicate.column) > predicate.value

    if isinstance(predicate, ColumnGreaterThan):
        return listing_column(predicate.left) > listing_column(predicate.right)

    if isinstance(predicate, Like):
        pattern = f"%{escape_like(predicate.term)}%"
        return listing_column(predicate.column).ilike(pattern, escape="\\")

    if isinstance(predicate, NotNull):
        return listing_column(predicate.column).is_not(None)

    if isinstance(predicate, ListedWithin):
        cutoff = (today or date.today()) - timedelta(days=predicate.days)
        return listing_column(predicate.column) >= cutoff

    if isinstance(predicate, UpcomingOpenHouse):
        upcoming = select(OpenHouse.listing_key).where(
            OpenHouse.open_house_date >= func.current_date()
        )
        return Listing.listing_key.in_(upcoming)

    if isinstance(predicate, ExclusiveListing):
        column = listing_column(predicate.column)
        # Only cast ids that are all digits; MLS ids may contain letters.
        # Leading zeros do not count towards the BIGINT width.
        numeric_id = case(
            (
                column.regexp_match(f"^0*[0-9]{{1,{_MAX_BIGINT_DIGITS}}}$"),
                cast(column, BigInteger),
            ),
            else_=None,
        )
        return numeric_id < EXCLUSIVE_LISTING_WATERMARK

    if isinstance(predicate, Raw):
        return text(predicate.sql).bindparams(**dict(predicate.params))

    raise TypeError(f"Unsupported predicate node: {type(predicate).__name__}")


def render_order_by(order: SortOrder) -> ColumnElement:
    column = listing_column(order.column)
    if order.direction == SortDirection.ASC:
        return column.asc().nulls_last()
    return column.desc().nulls_last()


def build_listing_query(
    result: FilterResult,
    limit: int,
    offset: int = 0,
    today: date | None = None,
) -> Select:
    """SELECT listings matching a compiled search, ordered and paged."""
    return (
        select(Listing)
        .where(render_predicate(result.predicate, today))
        .order_by(render_order_by(result.order_by), Listing.id.desc())
        .limit(limit)
        .offset(offset)
    )


def build_count_query(result: FilterResult, today: date | None = None) -> Select:
    return select(func.count(Listing.id)).where(render_predicate(result.predicate, today))
