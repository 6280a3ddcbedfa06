"""
Search provider adapters.

Closed set of backends behind one SearchProvider base class:
- proprietary: internal perceptual-hash scanner
- tineye: TinEye REST API
- google_vision: Google Cloud Vision web detection
"""

from .base import (
    ProviderFailure,
    ProviderOutcome,
    ProviderSearchOptions,
    ProviderSuccess,
    SearchProvider,
    classify_status,
    extract_domain,
)
from .google_vision import GoogleVisionProvider
from .proprietary import ProprietaryProvider
from .tineye import TinEyeProvider

__all__ = [
    "GoogleVisionProvider",
    "ProprietaryProvider",
    "ProviderFailure",
    "ProviderOutcome",
    "ProviderSearchOptions",
    "ProviderSuccess",
    "SearchProvider",
    "TinEyeProvider",
    "classify_status",
    "extract_domain",
]
