"""Print the SQL a search compiles to, without touching the database.

Usage:
    python scripts/explain_search.py city=Boston,Cambridge beds=3 sort=price_asc
    python scripts/explain_search.py 'polygon=[[42.3,-71.1],[42.4,-71.1],[42.4,-71.0]]'
"""

import sys
from pathlib import Path

from sqlalchemy.dialects import postgresql

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from listing_search.compiler import FilterCompiler, FilterValidationError
from listing_search.query import build_listing_query


def parse_args(pairs: list[str]) -> dict[str, str]:
    """key=value arguments to a raw filter mapping."""
    filters = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Expected key=value, got {pair!r}")
        filters[key.strip()] = value
    return filters


def explain(filters: dict[str, str], per_page: int = 25) -> str:
    result = FilterCompiler().compile(filters)
    stmt = build_listing_query(
        result, limit=per_page * result.overfetch_multiplier, offset=0
    )
    compiled = stmt.compile(dialect=postgresql.dialect())

    lines = [
        f"-- direct lookup: {result.is_direct_lookup}",
        f"-- school criteria: {dict(result.school_criteria) or 'none'}",
        f"-- overfetch multiplier: {result.overfetch_multiplier}",
        str(compiled),
        f"-- params: {compiled.params}",
    ]
    return "\n".join(lines)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Show the SQL for a listing search")
    parser.add_argument("filters", nargs="*", help="Filters as key=value")
    parser.add_argument("--per-page", type=int, default=25, help="Page size (default 25)")
    args = parser.parse_args()

    try:
        print(explain(parse_args(args.filters), per_page=args.per_page))
    except FilterValidationError as e:
        print(f"Invalid filters: {e}")
        sys.exit(1)
