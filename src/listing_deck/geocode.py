from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import requests

from listing_deck.errors import ListingDeckError


logger = logging.getLogger("listing_deck.geocode")

_DEFAULT_UA = "listing-deck/0.1 (reverse geocoding for listing search)"

# Keys Nominatim may use for the locality, most specific first.
_LOCALITY_KEYS = ("city", "town", "village", "hamlet", "municipality", "county")


class GeocodingError(ListingDeckError):
    """Reverse geocoding failed (transport, status or payload)."""


class ReverseGeocoder(Protocol):
    def reverse(self, latitude: float, longitude: float) -> Optional[Tuple[str, str]]:
        """Return ``(city, state)`` or None when the point has no locality."""
        ...


def _state_code(address: dict) -> str:
    iso = str(address.get("ISO3166-2-lvl4") or "")
    if iso.startswith("US-") and len(iso) == 5:
        return iso[3:]
    return str(address.get("state") or "").strip()


class NominatimGeocoder:
    def __init__(
        self,
        url: str = "https://nominatim.openstreetmap.org/reverse",
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", _DEFAULT_UA)
        self.timeout = timeout

    def reverse(self, latitude: float, longitude: float) -> Optional[Tuple[str, str]]:
        params = {
            "format": "jsonv2",
            "lat": f"{latitude:.6f}",
            "lon": f"{longitude:.6f}",
            "zoom": 10,
            "addressdetails": 1,
        }
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GeocodingError(f"reverse geocoding request failed: {exc}") from exc
        if resp.status_code != 200:
            raise GeocodingError(f"reverse geocoding returned HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise GeocodingError("reverse geocoding returned invalid JSON") from exc

        address = payload.get("address") if isinstance(payload, dict) else None
        if not isinstance(address, dict):
            return None
        city = next(
            (str(address[k]).strip() for k in _LOCALITY_KEYS if address.get(k)),
            "",
        )
        state = _state_code(address)
        if not city or not state:
            return None
        return city, state
