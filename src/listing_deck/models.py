from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


CURRENT_LOCATION = "Current Location"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserIntent(str, Enum):
    BUYING = "buying"
    INVESTING = "investing"
    BROWSING = "browsing"

    @property
    def display_name(self) -> str:
        return {
            UserIntent.BUYING: "Buying a home",
            UserIntent.INVESTING: "Exploring commercial real estate / investment opportunities",
            UserIntent.BROWSING: "Browsing casually",
        }[self]


class PropertyType(str, Enum):
    HOUSE = "house"
    APARTMENT = "apartment"
    CONDO = "condo"
    TOWNHOUSE = "townhouse"
    COMMERCIAL = "commercial"
    WAREHOUSE = "warehouse"
    LAND = "land"
    # Preference-only sentinel; never filters and never appears on a Property.
    BROWSING = "browsing"

    @property
    def display_name(self) -> str:
        if self is PropertyType.LAND:
            return "Land"
        if self is PropertyType.BROWSING:
            return "Just browsing"
        return self.value.capitalize() + "s"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_TIMESTAMP_FIELDS = {"created_at", "updated_at"}


class Property(_CamelModel):
    """Canonical listing record. Serialized with camelCase keys.

    Equality compares listing content only; ``created_at``/``updated_at``
    are ignored.
    """

    id: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    price: int = 0
    property_type: PropertyType = PropertyType.HOUSE
    bedrooms: int = Field(default=0, ge=0)
    bathrooms: float = Field(default=0.0, ge=0)
    square_feet: Optional[int] = Field(default=None, gt=0)
    lot_size_acres: Optional[float] = Field(default=None, gt=0)
    year_built: Optional[int] = None
    image_urls: List[str] = Field(default_factory=list)
    # 0.0 is passed through as given; upstream uses it for "not geocoded".
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: str
    features: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("property_type")
    @classmethod
    def _not_browsing(cls, value: PropertyType) -> PropertyType:
        if value is PropertyType.BROWSING:
            raise ValueError("browsing is a preference sentinel, not a property type")
        return value

    @field_validator("description")
    @classmethod
    def _description_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be empty")
        return value

    def __eq__(self, other: object) -> bool:
        # Bookkeeping timestamps are not part of a listing's identity.
        if not isinstance(other, Property):
            return NotImplemented
        return self.model_dump(exclude=_TIMESTAMP_FIELDS) == other.model_dump(
            exclude=_TIMESTAMP_FIELDS
        )

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}"

    @property
    def formatted_price(self) -> str:
        return f"${self.price:,}"

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Property":
        return cls.model_validate(data)


class UserPreferences(_CamelModel):
    intents: List[UserIntent] = Field(default_factory=list)
    property_types: List[PropertyType] = Field(default_factory=list)
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    has_completed_onboarding: bool = False
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _order_price_range(self) -> "UserPreferences":
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            self.min_price, self.max_price = self.max_price, self.min_price
        return self

    def set_price_range(self, min_price: Optional[int], max_price: Optional[int]) -> None:
        """Set the budget, swapping the bounds if they arrive inverted."""
        if min_price is not None and max_price is not None and min_price > max_price:
            min_price, max_price = max_price, min_price
        self.min_price = min_price
        self.max_price = max_price

    @property
    def uses_current_location(self) -> bool:
        return (self.location or "").strip() == CURRENT_LOCATION

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class ZipQuery:
    zip: str

    @property
    def keyword(self) -> str:
        return self.zip


@dataclass(frozen=True)
class CityStateQuery:
    city: str
    state: str

    @property
    def keyword(self) -> str:
        return f"{self.city}, {self.state}"


QueryKey = Union[ZipQuery, CityStateQuery]


@dataclass
class UsageCounter:
    count: int
    period_end: datetime


# Upstream response envelope. Individual listings stay as plain dicts; their
# loosely-typed fields are resolved by the normalizer.
RawListing = Dict[str, Any]


class RequestMetadata(_CamelModel):
    id: Optional[str] = None
    status: Optional[str] = None
    url: Optional[str] = None


class SearchInformation(_CamelModel):
    total_results: Optional[int] = None


class ListingResponse(_CamelModel):
    properties: Optional[List[RawListing]] = None
    results: Optional[List[RawListing]] = None
    request_metadata: Optional[RequestMetadata] = None
    search_information: Optional[SearchInformation] = None
    has_next_page: Optional[bool] = None
    current_page: Optional[int] = None

    @property
    def all_properties(self) -> List[RawListing]:
        if self.properties is not None:
            return self.properties
        return self.results or []
