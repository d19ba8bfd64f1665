import argparse
import asyncio
import dataclasses
import json

from .filters import build_deck
from .log import setup_logging
from .models import PropertyType, UserPreferences
from .service import build_default_service
from .settings import get_settings


def _parse_types(parser, raw):
    types = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            types.append(PropertyType(part))
        except ValueError:
            valid = ", ".join(t.value for t in PropertyType)
            parser.error(f"unknown property type {part!r} (choose from {valid})")
    return types


def build_preferences(args, types=None, store=None):
    prefs = None
    if args.user and store is not None:
        prefs = store.get(args.user)
    if prefs is None:
        prefs = UserPreferences()
    if args.location is not None:
        prefs.location = args.location
    if args.lat is not None and args.lng is not None:
        prefs.latitude = args.lat
        prefs.longitude = args.lng
    if types:
        prefs.property_types = types
    if args.min_price is not None or args.max_price is not None:
        prefs.set_price_range(
            args.min_price if args.min_price is not None else prefs.min_price,
            args.max_price if args.max_price is not None else prefs.max_price,
        )
    return prefs


async def _acquire(service, prefs, args, timeout):
    try:
        return await service.acquire(
            prefs,
            user_id=args.user,
            timeout=timeout,
            force_refresh=args.refresh,
        )
    finally:
        await service.aclose()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Fetch, cache and filter property listings for the swipe deck",
    )
    parser.add_argument(
        "--location",
        default=None,
        help='ZIP code, "City, ST", or "Current Location" (uses --lat/--lng)',
    )
    parser.add_argument("--lat", type=float, default=None, help="Latitude")
    parser.add_argument("--lng", type=float, default=None, help="Longitude")
    parser.add_argument(
        "--types",
        default=None,
        help="Comma-separated property types (house, condo, ...)",
    )
    parser.add_argument("--min-price", type=int, default=None, help="Minimum price")
    parser.add_argument("--max-price", type=int, default=None, help="Maximum price")
    parser.add_argument(
        "--user",
        default=None,
        help="User id whose stored preferences are loaded and updated",
    )
    parser.add_argument(
        "--exclude",
        default=None,
        help="Comma-separated property ids already swiped",
    )
    parser.add_argument("--db", default=None, help="SQLite path for cache and usage")
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Fetch from the API even if the cache is fresh",
    )
    parser.add_argument(
        "--usage",
        action="store_true",
        help="Print the monthly API usage and exit",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of deck entries to print",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log records as JSON lines on stderr",
    )

    args = parser.parse_args(argv)
    if (args.lat is None) != (args.lng is None):
        parser.error("--lat and --lng must be given together")
    types = _parse_types(parser, args.types) if args.types else None
    setup_logging(args.log_level, json_lines=args.log_json)

    settings = get_settings()
    if args.db:
        settings = dataclasses.replace(settings, db_path=args.db)
    service = build_default_service(settings)

    if args.usage:
        print(json.dumps(service.usage.snapshot()))
        asyncio.run(service.aclose())
        return

    prefs = build_preferences(args, types, service.preferences_store)
    result = asyncio.run(_acquire(service, prefs, args, settings.acquire_timeout))

    seen = [s.strip() for s in (args.exclude or "").split(",") if s.strip()]
    deck = build_deck(result.properties, prefs, seen)
    if args.limit is not None:
        deck = deck[: args.limit]
    for prop in deck:
        print(json.dumps(prop.to_document()))
    summary = result.summary()
    summary["deck_count"] = len(deck)
    print(json.dumps(summary))


def _safe_main():
    try:
        main()
    except SystemExit:
        raise
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        raise SystemExit(1)


if __name__ == "__main__":
    _safe_main()
