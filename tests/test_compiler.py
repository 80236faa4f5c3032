"""Filter compilation: raw search parameters to FilterResult."""

import json

import pytest

from listing_search.compiler import (
    SCHOOL_OVERFETCH_MULTIPLIER,
    FilterCompiler,
    FilterValidationError,
    normalize_lot_size,
    parse_flag,
    parse_number,
    split_values,
)
from listing_search.predicates import (
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
    Range,
    Raw,
    UpcomingOpenHouse,
    columns_referenced,
    conjuncts,
)
from listing_search.sorting import DEFAULT_SORT
from listing_search.status import StatusResolver

ACTIVE = StatusResolver().resolve("Active")


def terms(result):
    return conjuncts(result.predicate)


# ========================================================================
# DEFAULTS & PURITY
# ========================================================================


def test_empty_input_is_active_listings_newest_first(compiler):
    result = compiler.compile({})

    assert result.predicate == AllOf((ACTIVE,))
    assert result.order_by == DEFAULT_SORT
    assert result.is_direct_lookup is False
    assert result.has_school_filters is False
    assert dict(result.school_criteria) == {}
    assert result.overfetch_multiplier == 1


def test_compiling_twice_gives_equal_results(compiler):
    raw = {
        "city": "Boston,Cambridge",
        "min_price": "500000",
        "polygon": "[[42.3,-71.1],[42.4,-71.1],[42.4,-71.0]]",
        "school_grade": "A",
        "new_listing_days": "7",
        "sort": "price_desc",
    }
    first = compiler.compile(raw)
    second = compiler.compile(raw)

    assert first == second
    assert repr(first) == repr(second)


def test_input_mapping_is_not_mutated(compiler):
    raw = {"city": ["Boston"], "beds": "3", "school_grade": "A"}
    snapshot = json.dumps(raw, sort_keys=True)
    compiler.compile(raw)
    assert json.dumps(raw, sort_keys=True) == snapshot


def test_unknown_keys_are_ignored(compiler):
    assert compiler.compile({"favorite_color": "blue", "page_token": "x"}) == compiler.compile({})


def test_result_is_immutable(compiler):
    result = compiler.compile({"school_grade": "A"})
    with pytest.raises(AttributeError):
        result.overfetch_multiplier = 1  # type: ignore[misc]
    with pytest.raises(TypeError):
        result.school_criteria["school_grade"] = "F"  # type: ignore[index]


# ========================================================================
# DIRECT LOOKUP
# ========================================================================


def test_mls_number_lookup(compiler):
    result = compiler.compile({"mls_number": "73012345"})

    assert result.is_direct_lookup is True
    assert result.predicate == AllOf((Equals("listing_id", "73012345"),))


def test_address_lookup_is_partial_match(compiler):
    result = compiler.compile({"address": " 12 Beacon St "})

    assert result.is_direct_lookup is True
    assert result.predicate == AllOf((Like("unparsed_address", "12 Beacon St"),))


def test_direct_lookup_suppresses_every_other_filter(compiler):
    result = compiler.compile({
        "mls_number": "X",
        "city": "Boston",
        "beds": 3,
        "status": "Sold",
        "school_grade": "A",
        "bounds": "not,even,valid",
    })

    assert result.is_direct_lookup is True
    assert result.predicate == AllOf((Equals("listing_id", "X"),))
    assert columns_referenced(result.predicate) == {"listing_id"}
    assert result.has_school_filters is False
    assert result.overfetch_multiplier == 1


def test_both_identity_keys_are_anded(compiler):
    result = compiler.compile({"mls_number": "73012345", "address": "Beacon"})

    assert terms(result) == (
        Equals("listing_id", "73012345"),
        Like("unparsed_address", "Beacon"),
    )


def test_blank_identity_keys_do_not_trigger_lookup(compiler):
    result = compiler.compile({"mls_number": "  ", "address": "", "city": "Boston"})

    assert result.is_direct_lookup is False
    assert InList("city", ("Boston",)) in terms(result)


def test_direct_lookup_still_honours_sort(compiler):
    result = compiler.compile({"mls_number": "1", "sort": "price_asc"})
    assert result.order_by == ("list_price", "ASC")


# ========================================================================
# STATUS
# ========================================================================


@pytest.mark.parametrize("status", ["Active", "Pending", "Under Agreement", "Sold", "", "nonsense"])
def test_status_is_always_the_first_term(compiler, status):
    result = compiler.compile({"status": status})
    assert terms(result)[0] == StatusResolver().resolve(status)


def test_pending_and_under_agreement_compile_identically(compiler):
    assert compiler.compile({"status": "Pending"}) == compiler.compile({"status": "Under Agreement"})


def test_multi_status_is_a_disjunction(compiler):
    status = terms(compiler.compile({"status": "Active,Sold"}))[0]
    assert isinstance(status, AnyOf)
    assert len(status.children) == 2


# ========================================================================
# LOCATION & CLASSIFICATION
# ========================================================================


def test_city_comma_string_and_list_are_equivalent(compiler):
    from_string = terms(compiler.compile({"city": "Boston,Cambridge"}))[1]
    from_list = terms(compiler.compile({"city": ["Boston", "Cambridge"]}))[1]

    assert isinstance(from_string, InList)
    assert from_string.column == from_list.column == "city"
    assert set(from_string.values) == set(from_list.values) == {"Boston", "Cambridge"}


def test_city_values_are_trimmed_and_deduplicated(compiler):
    assert InList("city", ("Boston", "Cambridge")) in terms(
        compiler.compile({"city": " Boston , ,Cambridge,Boston"})
    )


def test_zip_filter(compiler):
    assert InList("postal_code", ("02116", "02118")) in terms(compiler.compile({"zip": "02116,02118"}))


def test_neighborhood_checks_three_columns(compiler):
    assert AnyOf((
        Equals("subdivision_name", "Back Bay"),
        Equals("mls_area_major", "Back Bay"),
        Equals("mls_area_minor", "Back Bay"),
    )) in terms(compiler.compile({"neighborhood": "Back Bay"}))


def test_street_name_partial_match(compiler):
    assert Like("street_name", "Commonwealth") in terms(compiler.compile({"street_name": "Commonwealth"}))


def test_property_type_exact_match(compiler):
    assert Equals("property_type", "Residential") in terms(
        compiler.compile({"property_type": "Residential"})
    )


def test_property_sub_type_single_and_multi(compiler):
    assert Equals("property_sub_type", "Condominium") in terms(
        compiler.compile({"property_sub_type": "Condominium"})
    )
    assert InList("property_sub_type", ("Condominium", "Single Family Residence")) in terms(
        compiler.compile({"property_sub_type": "Condominium,Single Family Residence"})
    )


# ========================================================================
# PRICE, ROOMS, SIZE
# ========================================================================


def test_price_bounds_are_independent(compiler):
    both = terms(compiler.compile({"min_price": "300000", "max_price": 900000}))

    assert Range("list_price", minimum=300000) in both
    assert Range("list_price", maximum=900000) in both
    assert Range("list_price", minimum=300000) in terms(compiler.compile({"min_price": "300000"}))


def test_price_accepts_formatted_numbers(compiler):
    assert Range("list_price", minimum=750000) in terms(compiler.compile({"min_price": "$750,000"}))


def test_price_reduced(compiler):
    assert ColumnGreaterThan("original_list_price", "list_price") in terms(
        compiler.compile({"price_reduced": "1"})
    )


def test_beds_and_baths_are_minimums(compiler):
    result = terms(compiler.compile({"beds": "3", "baths": 2}))
    assert Range("bedrooms_total", minimum=3) in result
    assert Range("bathrooms_total", minimum=2) in result


def test_sqft_range(compiler):
    result = terms(compiler.compile({"sqft_min": 1200, "sqft_max": "2500"}))
    assert Range("living_area", minimum=1200) in result
    assert Range("living_area", maximum=2500) in result


def test_lot_size_in_square_feet_is_converted_to_acres(compiler):
    (lot,) = [t for t in terms(compiler.compile({"lot_size_min": 43560})) if isinstance(t, Range)]
    assert lot.column == "lot_size_acres"
    assert lot.minimum == pytest.approx(1.0)


def test_small_lot_size_is_already_acres(compiler):
    assert Range("lot_size_acres", minimum=0.5) in terms(compiler.compile({"lot_size_min": 0.5}))


def test_lot_size_threshold_is_inclusive_of_100_acres():
    assert normalize_lot_size(100) == 100
    assert normalize_lot_size(101) == pytest.approx(101 / 43560)


def test_lot_size_max_uses_same_unit_rule(compiler):
    assert Range("lot_size_acres", maximum=2.0) in terms(compiler.compile({"lot_size_max": 87120}))


# ========================================================================
# TIME, PARKING, AMENITIES, SPECIAL
# ========================================================================


def test_year_built_and_days_on_market(compiler):
    result = terms(compiler.compile({
        "year_built_min": "1990",
        "year_built_max": "2020",
        "min_dom": 3,
        "max_dom": "30",
    }))
    assert Range("year_built", minimum=1990) in result
    assert Range("year_built", maximum=2020) in result
    assert Range("days_on_market", minimum=3) in result
    assert Range("days_on_market", maximum=30) in result


def test_new_listing_days_is_relative(compiler):
    assert ListedWithin("listing_contract_date", 7) in terms(compiler.compile({"new_listing_days": "7"}))


def test_parking_minimums(compiler):
    result = terms(compiler.compile({"garage_spaces_min": 2, "parking_total_min": "3"}))
    assert Range("garage_spaces", minimum=2) in result
    assert Range("parking_total", minimum=3) in result


def test_amenity_flags(compiler):
    result = terms(compiler.compile({
        "has_virtual_tour": "true",
        "has_garage": 1,
        "has_fireplace": True,
    }))
    assert NotNull("virtual_tour_url_unbranded") in result
    assert GreaterThan("garage_spaces", 0) in result
    assert GreaterThan("fireplaces_total", 0) in result


@pytest.mark.parametrize("value", ["0", "false", "", "no", 0, False, None])
def test_falsy_flags_add_nothing(compiler, value):
    assert compiler.compile({"has_garage": value, "open_house_only": value}) == compiler.compile({})


def test_open_house_and_exclusive(compiler):
    result = terms(compiler.compile({"open_house_only": "1", "exclusive_only": "yes"}))
    assert UpcomingOpenHouse() in result
    assert ExclusiveListing("listing_id") in result


@pytest.mark.parametrize("value", ["abc", "", "0", 0, None, "NaN", [1, 2]])
def test_unusable_numbers_are_treated_as_absent(compiler, value):
    assert compiler.compile({"beds": value, "min_price": value}) == compiler.compile({})


# ========================================================================
# COMPOSITION
# ========================================================================


def test_each_filter_is_unchanged_by_the_others(compiler):
    singles = {
        "city": "Boston",
        "beds": "3",
        "max_price": "800000",
        "has_fireplace": "1",
        "street_name": "Main",
        "exclusive_only": "1",
    }
    combined = terms(compiler.compile(singles))

    for key, value in singles.items():
        own = terms(compiler.compile({key: value}))[1:]
        for condition in own:
            assert condition in combined, key


def test_combined_filters_are_one_conjunction(compiler):
    result = compiler.compile({"city": "Boston", "beds": 3, "min_price": 500000})

    assert isinstance(result.predicate, AllOf)
    assert terms(result) == (
        ACTIVE,
        InList("city", ("Boston",)),
        Range("list_price", minimum=500000),
        Range("bedrooms_total", minimum=3),
    )


# ========================================================================
# SPATIAL
# ========================================================================


def test_bounds_are_delegated_to_geocoding(compiler):
    result = terms(compiler.compile({"bounds": "42.30,-71.20,42.40,-71.00"}))
    (spatial,) = [t for t in result if isinstance(t, Raw)]

    assert spatial == compiler.geocoding.build_spatial_bounds_condition(
        42.40, 42.30, -71.00, -71.20, "coordinates"
    )


def test_bounds_as_list(compiler):
    from_list = compiler.compile({"bounds": [42.3, -71.2, 42.4, -71.0]})
    from_string = compiler.compile({"bounds": "42.3,-71.2,42.4,-71.0"})
    assert from_list == from_string


def test_polygon_json_and_list_are_equivalent(compiler):
    vertices = [[42.3, -71.1], [42.4, -71.1], [42.4, -71.0]]
    from_json = compiler.compile({"polygon": json.dumps(vertices)})
    from_list = compiler.compile({"polygon": vertices})

    assert from_json == from_list
    (spatial,) = [t for t in terms(from_json) if isinstance(t, Raw)]
    assert spatial == compiler.geocoding.build_spatial_polygon_condition(vertices, "coordinates")


class RecordingGeocoder:
    """Geocoding stand-in that returns a fixed opaque condition."""

    def __init__(self):
        self.calls = []

    def validate_coordinates(self, lat, lng):
        return True

    def validate_polygon(self, polygon):
        return isinstance(polygon, list) and len(polygon) >= 3

    def build_spatial_bounds_condition(self, *args):
        self.calls.append(("bounds", args))
        return Raw("opaque_bounds()")

    def build_spatial_polygon_condition(self, *args):
        self.calls.append(("polygon", args))
        return Raw("opaque_polygon()")


def test_spatial_conditions_are_anded_untouched():
    geocoder = RecordingGeocoder()
    result = FilterCompiler(geocoding=geocoder).compile({
        "bounds": "1,2,3,4",
        "polygon": [[0, 0], [0, 1], [1, 1]],
    })

    assert terms(result)[-2:] == (Raw("opaque_bounds()"), Raw("opaque_polygon()"))
    assert geocoder.calls == [
        ("bounds", (3.0, 1.0, 4.0, 2.0, "coordinates")),
        ("polygon", ([[0.0, 0.0], [0.0, 1.0], [1.0, 1.0]], "coordinates")),
    ]


@pytest.mark.parametrize(
    "bounds",
    ["42.3,-71.2,42.4", "a,b,c,d", "42.3,-71.2,42.4,-71.0,5", "95,-71.2,42.4,-71.0", {"n": 1}],
)
def test_malformed_bounds_are_rejected(compiler, bounds):
    with pytest.raises(FilterValidationError) as exc:
        compiler.compile({"bounds": bounds})
    assert exc.value.key == "bounds"


@pytest.mark.parametrize(
    "polygon",
    [
        "[[42.3,-71.1],[42.4,-71.1]",  # truncated JSON
        "[[42.3,-71.1],[42.4,-71.1]]",  # two vertices
        "[[42.3,-71.1],[42.4,\"x\"],[42.4,-71.0]]",
        "[[142.3,-71.1],[42.4,-71.1],[42.4,-71.0]]",
        '{"type": "Polygon"}',
        42,
    ],
)
def test_malformed_polygon_is_rejected(compiler, polygon):
    with pytest.raises(FilterValidationError) as exc:
        compiler.compile({"polygon": polygon})
    assert exc.value.key == "polygon"


def test_empty_spatial_values_are_absent(compiler):
    assert compiler.compile({"bounds": "", "polygon": []}) == compiler.compile({})


# ========================================================================
# SCHOOLS
# ========================================================================


def test_school_criteria_are_captured_not_compiled(compiler):
    result = compiler.compile({"school_grade": "A"})

    assert result.has_school_filters is True
    assert dict(result.school_criteria) == {"school_grade": "A"}
    assert result.overfetch_multiplier == SCHOOL_OVERFETCH_MULTIPLIER == 10
    assert result.predicate == AllOf((ACTIVE,))


def test_named_school_keys_are_school_criteria(compiler):
    result = compiler.compile({
        "elementary_school": "Lincoln",
        "high_school": "Brookline High",
        "school_district": "Brookline",
        "city": "Brookline",
    })

    assert dict(result.school_criteria) == {
        "elementary_school": "Lincoln",
        "high_school": "Brookline High",
        "school_district": "Brookline",
    }


def test_school_values_are_kept_verbatim(compiler):
    result = compiler.compile({"school_min_rating": ["8", "9"]})
    assert result.school_criteria["school_min_rating"] == ["8", "9"]


def test_no_school_keys_means_no_overfetch(compiler):
    result = compiler.compile({"city": "Boston", "school_grade": ""})

    assert result.has_school_filters is False
    assert result.overfetch_multiplier == 1


# ========================================================================
# COERCION HELPERS
# ========================================================================


def test_parse_number():
    assert parse_number("3") == 3.0
    assert parse_number(" 1,250.5 ") == 1250.5
    assert parse_number(True) is None
    assert parse_number("inf") is None
    assert parse_number({"a": 1}) is None
    assert parse_number(10**400) is None
    assert parse_number(-(10**400)) is None


@pytest.mark.parametrize("status", [1, True, 2.5])
def test_scalar_status_compiles_to_active(compiler, status):
    assert compiler.compile({"status": status}) == compiler.compile({})


def test_oversized_numbers_are_treated_as_absent(compiler):
    huge = 10**400
    assert compiler.compile({"beds": huge, "min_price": huge, "lot_size_min": huge}) == compiler.compile({})


def test_parse_flag():
    assert parse_flag("on") is True
    assert parse_flag("FALSE") is False
    assert parse_flag(" ") is False
    assert parse_flag(2) is True


def test_split_values():
    assert split_values("a, b,,a") == ("a", "b")
    assert split_values(["x", None, " y "]) == ("x", "y")
    assert split_values(2116) == ("2116",)
    assert split_values(None) == ()
