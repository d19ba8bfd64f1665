from __future__ import annotations

import logging
from typing import AbstractSet, Iterable, List, Set

from listing_deck.models import Property, PropertyType, UserPreferences


logger = logging.getLogger("listing_deck.filters")


def wanted_types(preferences: UserPreferences) -> Set[PropertyType]:
    """Property types that constrain the deck; empty means unconstrained."""
    return {t for t in preferences.property_types if t is not PropertyType.BROWSING}


def matches(prop: Property, preferences: UserPreferences, types: AbstractSet[PropertyType]) -> bool:
    if types and prop.property_type not in types:
        return False
    if preferences.min_price is not None and prop.price < preferences.min_price:
        return False
    if preferences.max_price is not None and prop.price > preferences.max_price:
        return False
    return True


def filter_properties(
    properties: List[Property], preferences: UserPreferences
) -> List[Property]:
    """Apply the user's type and budget preferences.

    If every property is filtered out the unfiltered input is returned
    instead, so the deck is never empty while the cache has listings.
    """
    if (
        not preferences.property_types
        and preferences.min_price is None
        and preferences.max_price is None
    ):
        return properties

    types = wanted_types(preferences)
    filtered = [p for p in properties if matches(p, preferences, types)]
    logger.debug("Filtered %d properties to %d", len(properties), len(filtered))
    if not filtered and properties:
        # Product fallback; see DESIGN.md before changing.
        logger.info(
            "Preferences matched none of %d properties; serving unfiltered",
            len(properties),
        )
        return properties
    return filtered


def build_deck(
    properties: List[Property],
    preferences: UserPreferences,
    seen_ids: Iterable[str] = (),
) -> List[Property]:
    """Filtered deck minus properties the user already liked or disliked."""
    seen = set(seen_ids)
    return [p for p in filter_properties(properties, preferences) if p.id not in seen]
