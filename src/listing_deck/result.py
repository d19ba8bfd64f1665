from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from listing_deck.errors import FailureKind
from listing_deck.models import Property


class AcquisitionState(str, Enum):
    IDLE = "idle"
    RESOLVING_LOCATION = "resolving_location"
    FETCHING = "fetching"
    NORMALIZING_CACHING = "normalizing_caching"
    SERVING = "serving"


SOURCE_FRESH = "fresh"
SOURCE_CACHE = "cache"
SOURCE_EMPTY = "empty"


@dataclass
class AcquisitionResult:
    properties: List[Property]
    source: str
    advisory: Optional[str] = None
    failure: Optional[FailureKind] = None
    query: Optional[str] = None
    fetched_count: int = 0
    state_trail: List[AcquisitionState] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.properties

    def summary(self) -> dict:
        return {
            "source": self.source,
            "properties_count": len(self.properties),
            "advisory": self.advisory,
            "failure": self.failure.value if self.failure else None,
            "query": self.query,
            "fetched_count": self.fetched_count,
            "states": [s.value for s in self.state_trail],
        }

    def to_dict(self) -> dict:
        data = self.summary()
        data["properties"] = [p.to_document() for p in self.properties]
        return data
