"""Source adapters for fetching deals."""

from deal_matcher.adapters.sources.extraction_sources import (
    HttpDealSource,
    JsonFileDealSource,
    parse_deals,
)

__all__ = ["HttpDealSource", "JsonFileDealSource", "parse_deals"]
