import asyncio

import httpx
import pytest

from listing_deck.errors import (
    DecodingError,
    HttpError,
    InvalidResponse,
    InvalidURL,
    MissingCredentials,
    RateLimitExceeded,
)
from listing_deck.listings_client import ListingFilters, ListingsClient, build_params
from listing_deck.models import CityStateQuery, PropertyType, UsageCounter, ZipQuery
from listing_deck.usage import MemoryUsageStore, UsageTracker, next_month_start


PAYLOAD = {
    "requestMetadata": {"id": "req-1", "status": "ok"},
    "searchInformation": {"totalResults": 2},
    "properties": [{"id": "1", "price": 100}, {"id": "2", "price": 200}],
    "hasNextPage": False,
    "currentPage": 1,
}


class Recorder:
    """MockTransport handler replaying queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(handler, usage=None, base_url="https://api.test", api_key="k-123"):
    return ListingsClient(
        base_url,
        api_key,
        usage=usage or UsageTracker(),
        min_request_interval=0,
        transport=httpx.MockTransport(handler),
    )


def _fetch(client, query=ZipQuery("78702"), filters=None, limit=50):
    async def run():
        try:
            return await client.fetch(query, filters, limit)
        finally:
            await client.aclose()

    return asyncio.run(run())


def test_build_params_sends_positive_filters_only():
    filters = ListingFilters(
        min_price=0,
        max_price=450000,
        min_beds=None,
        min_baths=2.5,
        property_types=[
            PropertyType.TOWNHOUSE,
            PropertyType.LAND,
            PropertyType.COMMERCIAL,
            PropertyType.BROWSING,
            PropertyType.HOUSE,
        ],
    )
    params = build_params(CityStateQuery("Austin", "TX"), filters)
    assert params == [
        ("keyword", "Austin, TX"),
        ("type", "forSale"),
        ("price.max", "450000"),
        ("baths.min", "2"),
        ("homeTypes", "townhome"),
        ("homeTypes", "lot"),
        ("homeTypes", "house"),
        ("page", "1"),
    ]


def test_build_params_minimal():
    filters = ListingFilters(min_price=1, property_types=[PropertyType.CONDO])
    assert build_params(ZipQuery("78702"), filters, minimal=True) == [
        ("keyword", "78702"),
        ("type", "forSale"),
    ]


def test_fetch_success_counts_usage_and_sends_key():
    handler = Recorder(httpx.Response(200, json=PAYLOAD))
    usage = UsageTracker()
    client = _client(handler, usage)
    listings = _fetch(client)

    assert [item["id"] for item in listings] == ["1", "2"]
    assert usage.current_usage == 1
    req = handler.requests[0]
    assert req.headers["x-api-key"] == "k-123"
    assert req.url.path == "/scrape/zillow/listing"
    assert req.url.params["keyword"] == "78702"


def test_results_key_is_accepted():
    handler = Recorder(httpx.Response(200, json={"results": [{"id": "9"}]}))
    assert _fetch(_client(handler)) == [{"id": "9"}]


def test_missing_listing_keys_yield_no_listings():
    handler = Recorder(httpx.Response(200, json={"requestMetadata": {"status": "ok"}}))
    assert _fetch(_client(handler)) == []


def test_limit_truncates():
    handler = Recorder(httpx.Response(200, json=PAYLOAD))
    assert len(_fetch(_client(handler), limit=1)) == 1


def test_422_retries_once_with_minimal_params():
    handler = Recorder(
        httpx.Response(422, text="unprocessable"),
        httpx.Response(200, json=PAYLOAD),
    )
    usage = UsageTracker()
    filters = ListingFilters(min_price=100000, property_types=[PropertyType.CONDO])
    listings = _fetch(_client(handler, usage), filters=filters)

    assert len(listings) == 2
    assert usage.current_usage == 1
    first, second = handler.requests
    assert first.url.params.get_list("homeTypes") == ["condo"]
    assert dict(second.url.params) == {"keyword": "78702", "type": "forSale"}


def test_second_422_is_raised():
    handler = Recorder(httpx.Response(422), httpx.Response(422))
    with pytest.raises(HttpError) as info:
        _fetch(_client(handler))
    assert info.value.status_code == 422
    assert len(handler.requests) == 2


@pytest.mark.parametrize("status", [401, 500])
def test_other_statuses_are_not_retried(status):
    handler = Recorder(httpx.Response(status, text="nope"))
    usage = UsageTracker()
    with pytest.raises(HttpError) as info:
        _fetch(_client(handler, usage))
    assert info.value.status_code == status
    assert len(handler.requests) == 1
    assert usage.current_usage == 0


def test_transport_failure_is_invalid_response():
    handler = Recorder(httpx.ConnectError("refused"))
    with pytest.raises(InvalidResponse):
        _fetch(_client(handler))


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=[{"id": "1"}]),
        httpx.Response(200, json={"properties": "nope"}),
    ],
)
def test_undecodable_payload(response):
    usage = UsageTracker()
    with pytest.raises(DecodingError):
        _fetch(_client(Recorder(response), usage))
    assert usage.current_usage == 0


def test_quota_exhausted_makes_no_request(now):
    store = MemoryUsageStore()
    store.save_usage("listings_api", UsageCounter(count=1000, period_end=next_month_start(now)))
    usage = UsageTracker(store, clock=lambda: now)
    handler = Recorder()
    with pytest.raises(RateLimitExceeded):
        _fetch(_client(handler, usage))
    assert handler.requests == []


def test_missing_api_key():
    handler = Recorder()
    with pytest.raises(MissingCredentials):
        _fetch(_client(handler, api_key=None))
    assert handler.requests == []


def test_invalid_base_url():
    with pytest.raises(InvalidURL):
        _fetch(_client(Recorder(), base_url="not a url"))


def test_back_to_back_searches_are_paced():
    handler = Recorder(httpx.Response(200, json=PAYLOAD), httpx.Response(200, json=PAYLOAD))
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    client = ListingsClient(
        "https://api.test",
        "k-123",
        usage=UsageTracker(),
        min_request_interval=10.0,
        transport=httpx.MockTransport(handler),
        sleep_fn=fake_sleep,
    )

    async def run():
        try:
            await client.fetch(ZipQuery("78702"))
            await client.fetch(ZipQuery("78702"))
        finally:
            await client.aclose()

    asyncio.run(run())

    assert len(handler.requests) == 2
    assert len(waits) == 1
    assert waits[0] == pytest.approx(10.0, abs=0.5)
