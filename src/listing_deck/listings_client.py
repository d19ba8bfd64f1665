from __future__ import annotations

import asyncio
import logging
import time
import urllib.parse
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from listing_deck.errors import (
    DecodingError,
    HttpError,
    InvalidResponse,
    InvalidURL,
    MissingCredentials,
    RateLimitExceeded,
)
from listing_deck.models import (
    ListingResponse,
    PropertyType,
    QueryKey,
    RawListing,
)
from listing_deck.usage import UsageTracker


logger = logging.getLogger("listing_deck.client")

LISTING_ENDPOINT = "/scrape/zillow/listing"
TRANSACTION_TYPE = "forSale"
UNPROCESSABLE = 422

# Canonical type -> upstream homeTypes value. Types missing here are not
# searchable upstream and are left out of the request.
HOME_TYPES_PARAM: Dict[PropertyType, str] = {
    PropertyType.HOUSE: "house",
    PropertyType.APARTMENT: "apartment",
    PropertyType.CONDO: "condo",
    PropertyType.TOWNHOUSE: "townhome",
    PropertyType.LAND: "lot",
}


class TokenBucket:
    """Paces calls to ``rate_per_sec``; ``take`` says how long to sleep."""

    def __init__(self, rate_per_sec: float = 1.0, capacity: float = 1.0) -> None:
        self.rate_per_sec = rate_per_sec
        self.capacity = capacity
        self.tokens = capacity
        self.last_check = time.monotonic()

    def take(self) -> float:
        """Consume a token; return the seconds to wait first (0.0 if none)."""
        now = time.monotonic()
        elapsed = now - self.last_check
        self.last_check = now
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0.0
        wait_time = (1.0 - self.tokens) / self.rate_per_sec
        self.tokens = 0.0
        return max(0.0, wait_time)


@dataclass
class ListingFilters:
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    min_beds: Optional[int] = None
    min_baths: Optional[float] = None
    property_types: Sequence[PropertyType] = field(default_factory=list)


def home_types_for(types: Sequence[PropertyType]) -> List[str]:
    out: List[str] = []
    for t in types:
        value = HOME_TYPES_PARAM.get(PropertyType(t))
        if value and value not in out:
            out.append(value)
    return out


def build_params(
    query: QueryKey,
    filters: Optional[ListingFilters] = None,
    *,
    minimal: bool = False,
) -> List[Tuple[str, str]]:
    """Query parameters for a listing search.

    Numeric filters are only sent when positive; the API answers 422 to some
    zero-valued combinations. ``homeTypes`` repeats once per value.
    """
    params: List[Tuple[str, str]] = [
        ("keyword", query.keyword),
        ("type", TRANSACTION_TYPE),
    ]
    if minimal or filters is None:
        return params
    numeric = (
        ("price.min", filters.min_price),
        ("price.max", filters.max_price),
        ("beds.min", filters.min_beds),
        ("baths.min", int(filters.min_baths) if filters.min_baths else None),
    )
    for name, value in numeric:
        if value is not None and value > 0:
            params.append((name, str(int(value))))
    for home_type in home_types_for(filters.property_types):
        params.append(("homeTypes", home_type))
    params.append(("page", "1"))
    return params


class ListingsClient:
    """Client for the listings search API.

    Only HTTP 422 is retried, once, with the two mandatory parameters.
    Each successful response is counted against ``usage`` exactly once.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        *,
        usage: Optional[UsageTracker] = None,
        timeout: float = 30.0,
        min_request_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep_fn: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.usage = usage
        self.timeout = timeout
        self.transport = transport
        self.sleep_fn = sleep_fn or asyncio.sleep
        self._bucket = (
            TokenBucket(rate_per_sec=1.0 / min_request_interval, capacity=1.0)
            if min_request_interval > 0
            else None
        )
        self._client: Optional[httpx.AsyncClient] = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        parsed = urllib.parse.urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidURL(f"Invalid API URL: {self.base_url!r}")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "x-api-key": self.api_key or "",
                "Accept": "application/json",
                "User-Agent": "listing-deck/0.1",
            },
        )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        query: QueryKey,
        filters: Optional[ListingFilters] = None,
        limit: int = 50,
    ) -> List[RawListing]:
        if not self.api_key:
            raise MissingCredentials("API key not configured")
        if self.usage is not None and not self.usage.can_consume():
            raise RateLimitExceeded(
                f"API rate limit exceeded ({self.usage.max_usage}/month limit reached)"
            )

        try:
            response = await self._search(build_params(query, filters))
        except HttpError as exc:
            if exc.status_code != UNPROCESSABLE:
                raise
            logger.warning(
                "Listing search for %r rejected with 422; retrying with keyword and type only",
                query.keyword,
            )
            response = await self._search(build_params(query, minimal=True))

        listings = response.all_properties
        total = response.search_information.total_results if response.search_information else None
        logger.info(
            "Fetched %d listings for %r (total=%s, page=%s, more=%s)",
            len(listings),
            query.keyword,
            total,
            response.current_page,
            response.has_next_page,
        )
        return listings[:limit]

    async def _search(self, params: List[Tuple[str, str]]) -> ListingResponse:
        client = await self._ensure_client()
        if self._bucket is not None:
            wait_time = self._bucket.take()
            if wait_time:
                await self.sleep_fn(wait_time)
        logger.debug("GET %s params=%s", LISTING_ENDPOINT, params)
        try:
            resp = await client.get(LISTING_ENDPOINT, params=params)
        except httpx.InvalidURL as exc:
            raise InvalidURL(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise InvalidResponse(f"Invalid response from API: {exc!r}") from exc

        if not 200 <= resp.status_code < 300:
            body = resp.text[:500]
            if resp.status_code == 401:
                logger.error("Listings API authentication failed (401); check the API key")
            else:
                logger.error("Listings API HTTP error %d: %s", resp.status_code, body)
            raise HttpError(resp.status_code, body)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise DecodingError(f"Failed to decode response: {exc}") from exc
        if not isinstance(payload, dict):
            raise DecodingError("Failed to decode response: expected a JSON object")
        try:
            parsed = ListingResponse.model_validate(payload)
        except ValidationError as exc:
            raise DecodingError(f"Failed to decode response: {exc}") from exc

        if self.usage is not None:
            self.usage.consume()
        return parsed
