import os
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    from listing_deck.settings import reset_settings_cache

    for key in list(os.environ):
        if key.startswith("LISTING_DECK_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def raw_listing():
    return {
        "id": "2063378829",
        "url": "https://www.zillow.com/homedetails/2063378829_zpid/",
        "price": 675000,
        "status": "FOR_SALE",
        "address": {
            "street": "1402 Willow St",
            "city": "Austin",
            "state": "TX",
            "zipCode": "78702",
        },
        "streetAddress": "ignored flat street",
        "city": "Ignored City",
        "beds": 3,
        "baths": 2.5,
        "livingArea": 1850,
        "homeType": "SINGLE_FAMILY",
        "lotSize": "0.25 acres",
        "yearBuilt": 1995,
        "photos": ["https://photos.example/1.jpg", "https://photos.example/2.jpg"],
        "location": {"latitude": 30.2621, "longitude": -97.7226},
    }


@pytest.fixture
def make_property():
    from listing_deck.models import Property, PropertyType

    def factory(pid="p-1", price=500000, property_type=PropertyType.HOUSE, **kwargs):
        kwargs.setdefault("description", f"{property_type.value} listing")
        kwargs.setdefault("created_at", NOW)
        kwargs.setdefault("updated_at", NOW)
        return Property(id=pid, price=price, property_type=property_type, **kwargs)

    return factory
