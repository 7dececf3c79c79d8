"""Smart receipt search tiers."""

from __future__ import annotations

from .service import SmartSearchService
from .tiers import (
    LocalSearchTier,
    SearchChain,
    SearchError,
    SearchFailedError,
    SearchQuery,
    TextSearchTier,
    TierResult,
    VectorSearchTier,
)

__all__ = [
    "SmartSearchService",
    "LocalSearchTier",
    "SearchChain",
    "SearchError",
    "SearchFailedError",
    "SearchQuery",
    "TextSearchTier",
    "TierResult",
    "VectorSearchTier",
]
