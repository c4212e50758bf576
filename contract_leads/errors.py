"""
Exception types for Contract Leads.

Transport/auth failures raise a SourceError subclass and are retried by the
job runner at the whole-run level. ConfigurationError means a required
credential is missing; the affected source is skipped for that run.
"""

from typing import Any, Optional


class ContractLeadsError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ContractLeadsError):
    """A required setting or credential is missing or invalid."""


class SourceError(ContractLeadsError):
    """An external source could not be reached or refused the request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class SamGovApiError(SourceError):
    """SAM.gov opportunities API failure."""


class BidBoardError(SourceError):
    """Municipal bid board scrape failure."""


class GmailApiError(SourceError):
    """Gmail inbox query or modify failure."""


class InvalidFiltersError(ContractLeadsError, ValueError):
    """A saved-search filter payload failed validation."""


class NotificationError(ContractLeadsError):
    """An outbound alert email could not be delivered."""
