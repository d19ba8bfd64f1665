from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from listing_deck.cache import ListingCache
from listing_deck.errors import (
    ADVISORY_CACHED_DATA,
    ADVISORY_NO_PROPERTIES,
    ADVISORY_RATE_LIMITED,
    ADVISORY_SET_LOCATION,
    CacheUnavailable,
    ClientError,
    FailureKind,
    LocationResolutionError,
    failure_kind_of,
)
from listing_deck.filters import filter_properties
from listing_deck.geocode import NominatimGeocoder
from listing_deck.listings_client import ListingFilters, ListingsClient
from listing_deck.location import LocationResolver
from listing_deck.models import Property, UserPreferences, utcnow
from listing_deck.normalize import ListingNormalizer
from listing_deck.preferences import PreferencesStore
from listing_deck.result import (
    SOURCE_CACHE,
    SOURCE_EMPTY,
    SOURCE_FRESH,
    AcquisitionResult,
    AcquisitionState,
)
from listing_deck.settings import Settings
from listing_deck.storage import SQLiteUsageStore
from listing_deck.usage import UsageTracker


logger = logging.getLogger("listing_deck.service")

FlightKey = Tuple[object, ...]


def flight_key(preferences: UserPreferences, force_refresh: bool = False) -> FlightKey:
    """Identity of a fetch: the preference fields that change the request."""
    return (
        (preferences.location or "").strip().lower(),
        preferences.latitude,
        preferences.longitude,
        preferences.min_price,
        preferences.max_price,
        tuple(sorted(t.value for t in preferences.property_types)),
        force_refresh,
    )


def filters_from(preferences: UserPreferences) -> ListingFilters:
    return ListingFilters(
        min_price=preferences.min_price,
        max_price=preferences.max_price,
        property_types=list(preferences.property_types),
    )


class PropertyAcquisitionService:
    """Cache-aside acquisition of listings for the deck.

    Every failure degrades to the cached set (or an empty deck with an
    advisory); callers always get an :class:`AcquisitionResult`. Concurrent
    calls with the same fetch identity share one in-flight run.
    """

    def __init__(
        self,
        cache: ListingCache,
        usage: UsageTracker,
        client: ListingsClient,
        resolver: LocationResolver,
        *,
        normalizer: Optional[ListingNormalizer] = None,
        preferences_store: Optional[PreferencesStore] = None,
        fetch_limit: int = 50,
        cache_only: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cache = cache
        self.usage = usage
        self.client = client
        self.resolver = resolver
        self.normalizer = normalizer or ListingNormalizer()
        self.preferences_store = preferences_store
        self.fetch_limit = fetch_limit
        self.cache_only = cache_only
        self.clock = clock
        self._inflight: Dict[FlightKey, asyncio.Task] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def acquire(
        self,
        preferences: UserPreferences,
        *,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
        force_refresh: bool = False,
    ) -> AcquisitionResult:
        key = flight_key(preferences, force_refresh)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(preferences, user_id, force_refresh))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            logger.debug("Joining in-flight acquisition for %r", key[0])

        if timeout is None:
            return await asyncio.shield(task)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            # The shared run keeps going and still writes through the cache.
            logger.warning("Acquisition exceeded %.1fs; serving cached listings", timeout)
            result = self._serve_cached(
                preferences,
                advisory=ADVISORY_CACHED_DATA,
                failure=FailureKind.UPSTREAM_UNREACHABLE,
            )
            result.state_trail = [AcquisitionState.IDLE, AcquisitionState.SERVING]
            return result

    async def drain(self) -> None:
        """Wait for in-flight runs, e.g. before shutting the loop down."""
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.client.aclose()
        self.cache.close()
        if self.preferences_store is not None:
            self.preferences_store.close()
        close_usage = getattr(self.usage.store, "close", None)
        if close_usage is not None:
            close_usage()

    async def _run(
        self,
        preferences: UserPreferences,
        user_id: Optional[str],
        force_refresh: bool,
    ) -> AcquisitionResult:
        trail: List[AcquisitionState] = [AcquisitionState.IDLE]
        result = await self._acquire(preferences, user_id, force_refresh, trail)
        result.state_trail = trail + [AcquisitionState.SERVING]
        logger.info(
            "Serving %d properties from %s",
            len(result.properties),
            result.source,
            extra={"fields": result.summary()},
        )
        return result

    async def _acquire(
        self,
        preferences: UserPreferences,
        user_id: Optional[str],
        force_refresh: bool,
        trail: List[AcquisitionState],
    ) -> AcquisitionResult:
        if self.cache_only:
            return self._serve_cached(preferences, include_unrefreshed=True)

        if not force_refresh:
            try:
                stale = self.cache.is_stale(self.clock())
            except CacheUnavailable as exc:
                logger.error("Cache unavailable, forcing refresh: %s", exc)
                stale = True
            if not stale:
                try:
                    cached = self.cache.load()
                except CacheUnavailable as exc:
                    logger.error("Cache unavailable, forcing refresh: %s", exc)
                else:
                    if cached:
                        return AcquisitionResult(
                            properties=filter_properties(cached, preferences),
                            source=SOURCE_CACHE,
                        )
                    logger.info("Fresh cache is empty; fetching")

        trail.append(AcquisitionState.RESOLVING_LOCATION)
        previous_location = preferences.location
        try:
            query = await self.resolver.resolve(preferences)
        except LocationResolutionError as exc:
            logger.warning("Location could not be resolved: %s", exc.reason)
            return self._serve_cached(
                preferences,
                advisory=ADVISORY_SET_LOCATION,
                failure=FailureKind.LOCATION_UNDETERMINABLE,
            )
        if preferences.location != previous_location:
            self._persist_location(preferences, user_id)

        trail.append(AcquisitionState.FETCHING)
        if not self.usage.can_consume():
            return self._serve_cached(
                preferences,
                advisory=ADVISORY_RATE_LIMITED,
                failure=FailureKind.QUOTA_EXCEEDED,
                query=query.keyword,
            )
        try:
            raws = await self.client.fetch(query, filters_from(preferences), self.fetch_limit)
        except ClientError as exc:
            logger.error("Listing fetch for %r failed: %s", query.keyword, exc)
            advisory = ADVISORY_CACHED_DATA
            if failure_kind_of(exc) is FailureKind.QUOTA_EXCEEDED:
                advisory = ADVISORY_RATE_LIMITED
            return self._serve_cached(
                preferences,
                advisory=advisory,
                failure=failure_kind_of(exc),
                query=query.keyword,
            )

        trail.append(AcquisitionState.NORMALIZING_CACHING)
        now = self.clock()
        fresh = self.normalizer.normalize_all(raws, now=now)
        if not fresh:
            logger.info("Listing search for %r returned no properties", query.keyword)
            return self._serve_cached(preferences, query=query.keyword)

        failure: Optional[FailureKind] = None
        try:
            self.cache.upsert(fresh, refreshed_at=now)
        except CacheUnavailable as exc:
            logger.error("Serving fresh listings without caching them: %s", exc)
            failure = FailureKind.CACHE_UNAVAILABLE

        return AcquisitionResult(
            properties=filter_properties(fresh, preferences),
            source=SOURCE_FRESH,
            failure=failure,
            query=query.keyword,
            fetched_count=len(fresh),
        )

    def _serve_cached(
        self,
        preferences: UserPreferences,
        *,
        advisory: Optional[str] = None,
        failure: Optional[FailureKind] = None,
        query: Optional[str] = None,
        include_unrefreshed: bool = False,
    ) -> AcquisitionResult:
        cached: List[Property] = []
        try:
            # Without a refresh timestamp nothing in the store came from the API.
            if include_unrefreshed or self.cache.last_refreshed_at() is not None:
                cached = self.cache.load()
        except CacheUnavailable as exc:
            logger.error("Cache unavailable while degrading: %s", exc)
            failure = failure or FailureKind.CACHE_UNAVAILABLE

        if cached:
            return AcquisitionResult(
                properties=filter_properties(cached, preferences),
                source=SOURCE_CACHE,
                advisory=advisory,
                failure=failure,
                query=query,
            )
        if failure is not FailureKind.LOCATION_UNDETERMINABLE:
            advisory = ADVISORY_NO_PROPERTIES
        return AcquisitionResult(
            properties=[],
            source=SOURCE_EMPTY,
            advisory=advisory,
            failure=failure,
            query=query,
        )

    def _persist_location(self, preferences: UserPreferences, user_id: Optional[str]) -> None:
        if self.preferences_store is None or not user_id:
            return
        try:
            self.preferences_store.save(user_id, preferences)
        except sqlite3.Error as exc:
            logger.warning("Could not persist resolved location for %s: %s", user_id, exc)


def build_default_service(settings: Settings) -> PropertyAcquisitionService:
    """Composition root: one cache, usage tracker and client per process."""
    cache = ListingCache(
        settings.db_path,
        ttl=timedelta(hours=settings.cache_ttl_hours),
        read_limit=settings.cache_read_limit,
    )
    usage = UsageTracker(
        SQLiteUsageStore(settings.db_path),
        quota=settings.monthly_quota,
        warn_ratio=settings.quota_warn_ratio,
    )
    client = ListingsClient(
        settings.api_base_url,
        settings.api_key,
        usage=usage,
        timeout=settings.http_timeout,
        min_request_interval=settings.min_request_interval,
    )
    resolver = LocationResolver(NominatimGeocoder(settings.geocoder_url))
    return PropertyAcquisitionService(
        cache,
        usage,
        client,
        resolver,
        preferences_store=PreferencesStore(settings.db_path),
        fetch_limit=settings.fetch_limit,
        cache_only=settings.cache_only,
    )
