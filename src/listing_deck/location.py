from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from listing_deck.errors import LocationResolutionError
from listing_deck.geocode import GeocodingError, ReverseGeocoder
from listing_deck.models import CityStateQuery, QueryKey, UserPreferences, ZipQuery


logger = logging.getLogger("listing_deck.location")

_ZIP_RE = re.compile(r"^\d{5}$")


def parse_location(text: Optional[str]) -> Optional[QueryKey]:
    """Turn a typed location into a query key.

    Five digits are a ZIP code; anything with a comma is "city, state" split
    on the first comma. Everything else (including "Current Location") needs
    coordinates.
    """
    value = (text or "").strip()
    if not value:
        return None
    if _ZIP_RE.match(value):
        return ZipQuery(zip=value)
    if "," in value:
        city, state = value.split(",", 1)
        return CityStateQuery(city=city.strip(), state=state.strip())
    return None


class LocationResolver:
    def __init__(self, geocoder: Optional[ReverseGeocoder] = None) -> None:
        self.geocoder = geocoder

    async def resolve(self, preferences: UserPreferences) -> QueryKey:
        """Resolve ``preferences`` to a query key or raise LocationResolutionError.

        When coordinates had to be reverse-geocoded, the resulting
        "city, state" is written back to ``preferences.location``. This only
        warms the lookup for the next call; it does not change what the user
        asked for.
        """
        key = parse_location(preferences.location)
        if key is not None:
            return key

        if preferences.latitude is None or preferences.longitude is None:
            raise LocationResolutionError(LocationResolutionError.NO_LOCATION_DATA)
        if self.geocoder is None:
            raise LocationResolutionError(LocationResolutionError.UNDETERMINABLE)

        try:
            found = await asyncio.to_thread(
                self.geocoder.reverse, preferences.latitude, preferences.longitude
            )
        except GeocodingError as exc:
            logger.warning("Reverse geocoding failed: %s", exc)
            raise LocationResolutionError(LocationResolutionError.UNDETERMINABLE) from exc
        if not found:
            logger.warning(
                "No locality for coordinates (%.4f, %.4f)",
                preferences.latitude,
                preferences.longitude,
            )
            raise LocationResolutionError(LocationResolutionError.UNDETERMINABLE)

        city, state = found
        preferences.location = f"{city}, {state}"
        logger.info("Resolved coordinates to %s", preferences.location)
        return CityStateQuery(city=city, state=state)
