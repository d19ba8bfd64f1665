import logging
import math
import re
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from listing_deck.models import Property, PropertyType, RawListing, utcnow


logger = logging.getLogger("listing_deck.normalize")

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_LEADING_NUMBER_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)")
_NUMERIC_NOISE_RE = re.compile(r"[$,\s]")

SQFT_PER_ACRE = 43560.0


def normalize_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned.casefold()


def normalize_address(value: Optional[str]) -> str:
    cleaned = normalize_text(value)
    cleaned = _PUNCT_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned


# Upstream home-type codes, lower-cased.
HOME_TYPE_MAP: Dict[str, PropertyType] = {
    "single_family": PropertyType.HOUSE,
    "singlefamily": PropertyType.HOUSE,
    "house": PropertyType.HOUSE,
    "condo": PropertyType.CONDO,
    "condominium": PropertyType.CONDO,
    "townhome": PropertyType.TOWNHOUSE,
    "townhouse": PropertyType.TOWNHOUSE,
    "apartment": PropertyType.APARTMENT,
    "multi_family": PropertyType.APARTMENT,
    "multifamily": PropertyType.APARTMENT,
    "lot": PropertyType.LAND,
    "land": PropertyType.LAND,
    "commercial": PropertyType.COMMERCIAL,
    "warehouse": PropertyType.WAREHOUSE,
}


def map_home_type(code: Optional[str]) -> PropertyType:
    if not code:
        return PropertyType.HOUSE
    return HOME_TYPE_MAP.get(code.strip().lower(), PropertyType.HOUSE)


def parse_lot_size(value: Any) -> Optional[float]:
    """Parse "0.5 acres" / "21,780 sq ft" style strings into acres."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).replace(",", "")
    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        return None
    number = float(match.group(1))
    if "acre" not in text.lower():
        number = number / SQFT_PER_ACRE
    return number if number > 0 and math.isfinite(number) else None


# --- field accessors -------------------------------------------------------

Accessor = Callable[[RawListing], Any]


def _path(*keys: str) -> Accessor:
    def get(raw: RawListing) -> Any:
        node: Any = raw
        for key in keys:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node

    get.__name__ = "_".join(keys)
    return get


# Ordered by priority: structured sub-objects before flat fallbacks.
FIELD_SOURCES: Dict[str, Tuple[Accessor, ...]] = {
    "id": (_path("id"),),
    "url": (_path("url"),),
    "street": (
        _path("address", "street"),
        _path("address", "streetAddress"),
        _path("streetAddress"),
        _path("address"),
    ),
    "city": (_path("address", "city"), _path("city")),
    "state": (_path("address", "state"), _path("state")),
    "zip_code": (
        _path("address", "zipCode"),
        _path("address", "zip"),
        _path("zipCode"),
    ),
    "price": (_path("price"),),
    "bedrooms": (_path("beds"), _path("bedrooms")),
    "bathrooms": (_path("baths"), _path("bathrooms")),
    "square_feet": (_path("squareFeet"), _path("livingArea"), _path("area")),
    "home_type": (_path("homeType"),),
    "lot_size": (_path("lotSize"),),
    "year_built": (_path("yearBuilt"),),
    "images": (_path("photos"), _path("image")),
    "latitude": (_path("location", "latitude"), _path("latitude")),
    "longitude": (_path("location", "longitude"), _path("longitude")),
    "description": (_path("description"),),
    "status": (_path("status"),),
}


def _as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = _NUMERIC_NOISE_RE.sub("", value)
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    # NaN, inf and overflowing literals ("1e400") carry no usable value.
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> Optional[int]:
    number = _as_float(value)
    if number is None:
        return None
    return int(number)


def _as_images(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return [value] if value.strip() else None
    if not isinstance(value, list):
        return None
    urls: List[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("url")
        if isinstance(item, str) and item.strip():
            urls.append(item.strip())
    return urls or None


def resolve_field(
    raw: RawListing,
    name: str,
    coerce: Callable[[Any], Any] = _as_str,
) -> Any:
    """Return the first accessor result for ``name`` that survives ``coerce``."""
    for accessor in FIELD_SOURCES[name]:
        value = coerce(accessor(raw))
        if value is not None:
            return value
    return None


def _format_count(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def build_features(
    *,
    bedrooms: int,
    bathrooms: float,
    square_feet: Optional[int],
    lot_size: Optional[str],
    year_built: Optional[int],
) -> List[str]:
    features: List[str] = []
    if bedrooms > 0:
        features.append(f"{bedrooms} Bed{'s' if bedrooms > 1 else ''}")
    if bathrooms > 0:
        features.append(f"{_format_count(bathrooms)} Bath{'s' if bathrooms > 1 else ''}")
    if square_feet:
        features.append(f"{square_feet} sq ft")
    if lot_size:
        features.append(f"Lot: {lot_size}")
    if year_built:
        features.append(f"Built: {year_built}")
    return features


def describe(property_type: PropertyType, city: str, state: str, status: Optional[str]) -> str:
    text = f"{property_type.value.capitalize()} in {city}, {state}"
    if status:
        text += f" - {status}"
    return text


class ListingNormalizer:
    """Maps raw upstream listings onto :class:`Property`.

    Normalization is total: unparseable or missing fields fall back to
    defaults, and non-finite numbers are treated as missing. Two calls on
    the same listing produce equal properties with the same id.
    """

    def normalize(self, raw: RawListing, *, now: Optional[datetime] = None) -> Property:
        from listing_deck.identity import compute_listing_id

        now = now or utcnow()
        raw = raw if isinstance(raw, dict) else {}

        street = resolve_field(raw, "street") or ""
        city = resolve_field(raw, "city") or ""
        state = resolve_field(raw, "state") or ""
        zip_code = resolve_field(raw, "zip_code") or ""

        price = max(resolve_field(raw, "price", _as_int) or 0, 0)
        bedrooms = max(resolve_field(raw, "bedrooms", _as_int) or 0, 0)
        bathrooms = max(resolve_field(raw, "bathrooms", _as_float) or 0.0, 0.0)
        square_feet = resolve_field(raw, "square_feet", _as_int)
        if square_feet is not None and square_feet <= 0:
            square_feet = None
        year_built = resolve_field(raw, "year_built", _as_int)
        lot_text = resolve_field(raw, "lot_size")
        property_type = map_home_type(resolve_field(raw, "home_type"))

        description = resolve_field(raw, "description")
        if not description:
            description = describe(property_type, city, state, resolve_field(raw, "status"))

        listing_id, warnings = compute_listing_id(
            resolve_field(raw, "id"),
            resolve_field(raw, "url"),
            address=street,
            city=city,
            state=state,
            zip_code=zip_code,
        )
        for warning in warnings:
            logger.debug("listing %s: %s", listing_id, warning)

        return Property(
            id=listing_id,
            address=street,
            city=city,
            state=state,
            zip_code=zip_code,
            price=price,
            property_type=property_type,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            square_feet=square_feet,
            lot_size_acres=parse_lot_size(lot_text),
            year_built=year_built,
            image_urls=resolve_field(raw, "images", _as_images) or [],
            latitude=resolve_field(raw, "latitude", _as_float),
            longitude=resolve_field(raw, "longitude", _as_float),
            description=description,
            features=build_features(
                bedrooms=bedrooms,
                bathrooms=bathrooms,
                square_feet=square_feet,
                lot_size=lot_text,
                year_built=year_built,
            ),
            created_at=now,
            updated_at=now,
        )

    def normalize_all(
        self, raws: Iterable[RawListing], *, now: Optional[datetime] = None
    ) -> List[Property]:
        """Normalize a batch; a listing that still fails is logged and dropped."""
        now = now or utcnow()
        properties: List[Property] = []
        for index, raw in enumerate(raws):
            try:
                properties.append(self.normalize(raw, now=now))
            except (ValueError, TypeError, OverflowError) as exc:
                logger.warning("Skipping listing #%d that could not be normalized: %s", index, exc)
        return properties
