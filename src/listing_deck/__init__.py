"""Package initializer for `listing_deck`."""

from .models import Property, UserPreferences
from .result import AcquisitionResult
from .service import PropertyAcquisitionService, build_default_service

__all__ = [
    "AcquisitionResult",
    "Property",
    "PropertyAcquisitionService",
    "UserPreferences",
    "build_default_service",
]
