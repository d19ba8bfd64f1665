from listing_deck.filters import build_deck, filter_properties
from listing_deck.models import PropertyType, UserPreferences


def _deck(make_property):
    return [
        make_property("h-1", price=250000, property_type=PropertyType.HOUSE),
        make_property("c-1", price=400000, property_type=PropertyType.CONDO),
        make_property("h-2", price=900000, property_type=PropertyType.HOUSE),
        make_property("l-1", price=80000, property_type=PropertyType.LAND),
    ]


def test_no_preferences_returns_input_untouched(make_property):
    props = _deck(make_property)
    assert filter_properties(props, UserPreferences()) is props


def test_browsing_only_does_not_constrain_types(make_property):
    props = _deck(make_property)
    prefs = UserPreferences(property_types=[PropertyType.BROWSING])
    assert [p.id for p in filter_properties(props, prefs)] == ["h-1", "c-1", "h-2", "l-1"]


def test_type_and_inclusive_price_bounds(make_property):
    props = _deck(make_property)
    prefs = UserPreferences(
        property_types=[PropertyType.HOUSE, PropertyType.CONDO],
        min_price=250000,
        max_price=400000,
    )
    assert [p.id for p in filter_properties(props, prefs)] == ["h-1", "c-1"]


def test_only_max_price(make_property):
    props = _deck(make_property)
    prefs = UserPreferences(max_price=100000)
    assert [p.id for p in filter_properties(props, prefs)] == ["l-1"]


def test_no_match_falls_back_to_unfiltered(make_property):
    props = _deck(make_property)
    prefs = UserPreferences(property_types=[PropertyType.WAREHOUSE])
    assert filter_properties(props, prefs) == props


def test_empty_input_stays_empty():
    prefs = UserPreferences(property_types=[PropertyType.CONDO], min_price=1)
    assert filter_properties([], prefs) == []


def test_build_deck_drops_seen_properties(make_property):
    props = _deck(make_property)
    prefs = UserPreferences(property_types=[PropertyType.HOUSE])
    deck = build_deck(props, prefs, seen_ids=["h-2"])
    assert [p.id for p in deck] == ["h-1"]
