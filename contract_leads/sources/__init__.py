"""
Sources package - Adapters for contract data sources.

Each adapter module handles:
1. Fetching raw records (REST API, scraped page, or inbox query)
2. Raising a SourceError subclass on transport/auth failure
3. Returning raw records for normalization
"""

from .base import BaseSource
from .sam_gov import SamGovClient
from .boston_bids import BostonBidBoardScraper
from .commbuys_email import CommbuysInbox, InboxMessage

__all__ = [
    "BaseSource",
    "SamGovClient",
    "BostonBidBoardScraper",
    "CommbuysInbox",
    "InboxMessage",
]
