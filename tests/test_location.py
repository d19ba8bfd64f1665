import asyncio

import pytest
import requests

from listing_deck.errors import LocationResolutionError
from listing_deck.geocode import GeocodingError, NominatimGeocoder
from listing_deck.location import LocationResolver, parse_location
from listing_deck.models import CURRENT_LOCATION, CityStateQuery, UserPreferences, ZipQuery


class FakeGeocoder:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def reverse(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if self.error:
            raise self.error
        return self.result


def _resolve(resolver, prefs):
    return asyncio.run(resolver.resolve(prefs))


@pytest.mark.parametrize(
    "text,expected",
    [
        ("78702", ZipQuery(zip="78702")),
        ("  78702 ", ZipQuery(zip="78702")),
        ("Austin, TX", CityStateQuery(city="Austin", state="TX")),
        ("Washington, D.C., US", CityStateQuery(city="Washington", state="D.C., US")),
        ("7870", None),
        ("Austin", None),
        (CURRENT_LOCATION, None),
        ("", None),
        (None, None),
    ],
)
def test_parse_location(text, expected):
    assert parse_location(text) == expected


def test_typed_location_skips_geocoder():
    geocoder = FakeGeocoder(result=("Dallas", "TX"))
    prefs = UserPreferences(location="Austin, TX", latitude=32.7, longitude=-96.8)
    assert _resolve(LocationResolver(geocoder), prefs) == CityStateQuery("Austin", "TX")
    assert geocoder.calls == []


def test_coordinates_are_reverse_geocoded_and_written_back():
    geocoder = FakeGeocoder(result=("Austin", "TX"))
    prefs = UserPreferences(location=CURRENT_LOCATION, latitude=30.26, longitude=-97.74)
    assert _resolve(LocationResolver(geocoder), prefs) == CityStateQuery("Austin", "TX")
    assert prefs.location == "Austin, TX"
    assert geocoder.calls == [(30.26, -97.74)]


def test_no_location_data():
    with pytest.raises(LocationResolutionError) as info:
        _resolve(LocationResolver(FakeGeocoder()), UserPreferences())
    assert info.value.reason == LocationResolutionError.NO_LOCATION_DATA


@pytest.mark.parametrize(
    "geocoder",
    [
        None,
        FakeGeocoder(result=None),
        FakeGeocoder(error=GeocodingError("boom")),
    ],
)
def test_undeterminable_location(geocoder):
    prefs = UserPreferences(location=CURRENT_LOCATION, latitude=0.0, longitude=0.0)
    with pytest.raises(LocationResolutionError) as info:
        _resolve(LocationResolver(geocoder), prefs)
    assert info.value.reason == LocationResolutionError.UNDETERMINABLE
    assert prefs.location == CURRENT_LOCATION


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response


def test_nominatim_prefers_iso_state_code():
    session = FakeSession(
        FakeResponse(
            payload={
                "address": {
                    "town": "Round Rock",
                    "county": "Williamson County",
                    "state": "Texas",
                    "ISO3166-2-lvl4": "US-TX",
                }
            }
        )
    )
    geocoder = NominatimGeocoder("https://geo.test/reverse", session=session)
    assert geocoder.reverse(30.5, -97.7) == ("Round Rock", "TX")
    url, params, _ = session.requests[0]
    assert url == "https://geo.test/reverse"
    assert params["format"] == "jsonv2"
    assert params["lat"] == "30.500000"
    assert "User-Agent" in session.headers


def test_nominatim_without_locality_returns_none():
    session = FakeSession(FakeResponse(payload={"address": {"country": "United States"}}))
    assert NominatimGeocoder(session=session).reverse(0.0, 0.0) is None


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("down")),
        FakeSession(FakeResponse(status_code=503)),
        FakeSession(FakeResponse(payload=ValueError("not json"))),
    ],
)
def test_nominatim_failures_raise(session):
    with pytest.raises(GeocodingError):
        NominatimGeocoder(session=session).reverse(30.0, -97.0)
