"""
SAM.gov opportunities API client.

The federal source is a structured JSON API keyed by ``api_key``. SAM.gov
allows 10 requests per second, so requests are spaced by the configured
rate-limit delay. Results are paginated with ``limit``/``offset``.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from .base import BaseSource
from ..config import SamGovConfig
from ..errors import ConfigurationError, SamGovApiError
from ..models import ContractSource, utcnow
from ..search_filters import ContractSearchFilters

logger = logging.getLogger(__name__)

# SAM.gov expects MM/dd/yyyy for every date parameter
SAM_DATE_FORMAT = "%m/%d/%Y"


def _sam_date(value: date) -> str:
    return value.strftime(SAM_DATE_FORMAT)


class SamGovClient(BaseSource):
    """
    Client for the SAM.gov opportunities search API.

    Usage:
        client = SamGovClient(settings.sam_gov)
        opportunities = client.fetch(limit=25)
    """

    source = ContractSource.SAM_GOV
    error_class = SamGovApiError
    secret_params = ("api_key",)

    def __init__(self, config: SamGovConfig, request_timeout: int = 30, session=None):
        super().__init__(
            request_delay=config.rate_limit_delay,
            request_timeout=request_timeout,
            session=session,
        )
        self.config = config
        self.session.headers["Accept"] = "application/json"

    def _require_key(self) -> str:
        if not self.config.api_key:
            raise ConfigurationError("SAM.gov API key is not configured (SAM_GOV_API_KEY)")
        return self.config.api_key

    def build_query_params(
        self,
        filters: Optional[ContractSearchFilters] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> dict:
        """
        Translate search filters into SAM.gov query parameters.

        Args:
            filters: Search filters (all optional)
            limit: Page size
            offset: Record offset

        Returns:
            Query parameter dict
        """
        filters = filters or ContractSearchFilters()
        params = {
            "api_key": self._require_key(),
            "limit": str(limit),
            "offset": str(offset),
        }

        if filters.keyword:
            params["q"] = filters.keyword
        if filters.naics_codes:
            params["naics"] = ",".join(filters.naics_codes)

        if filters.posted_date_from:
            params["postedFrom"] = _sam_date(filters.posted_date_from)
        if filters.posted_date_to:
            params["postedTo"] = _sam_date(filters.posted_date_to)

        if filters.response_deadline_from:
            params["rdlfrom"] = _sam_date(filters.response_deadline_from)
        if filters.response_deadline_to:
            params["rdlto"] = _sam_date(filters.response_deadline_to)

        if filters.set_aside_type:
            params["typeOfSetAside"] = filters.set_aside_type
        if filters.notice_type:
            params["ptype"] = filters.notice_type
        if filters.place_of_performance:
            params["state"] = filters.place_of_performance

        return params

    def search(
        self,
        filters: Optional[ContractSearchFilters] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> dict:
        """
        Run one search request.

        Returns:
            The decoded response (``totalRecords``, ``opportunitiesData``, ...)

        Raises:
            ConfigurationError: If no API key is configured
            SamGovApiError: On transport failure or a non-2xx response
        """
        params = self.build_query_params(filters, limit=limit, offset=offset)
        response = self._get(self.config.api_url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise SamGovApiError(f"SAM.gov returned invalid JSON: {e}") from e

    def get_opportunity(self, notice_id: str) -> Optional[dict]:
        """Fetch one opportunity by notice ID; None if it does not exist."""
        params = {"api_key": self._require_key(), "noticeId": notice_id}
        response = self._get(self.config.api_url, params=params, allow_status=(404,))
        if response.status_code == 404:
            return None
        data = response.json()
        opportunities = data.get("opportunitiesData") or []
        return opportunities[0] if opportunities else None

    def fetch_all(
        self,
        filters: Optional[ContractSearchFilters] = None,
        max_results: int = 1000,
    ) -> list[dict]:
        """
        Page through search results.

        Stops when a page comes back short or ``max_results`` is reached.
        """
        results: list[dict] = []
        page_size = self.config.page_size
        offset = 0

        while len(results) < max_results:
            data = self.search(filters, limit=page_size, offset=offset)
            page = data.get("opportunitiesData") or []
            if not page:
                break

            results.extend(page)
            logger.debug(f"SAM.gov page at offset {offset}: {len(page)} records")

            if len(page) < page_size:
                break
            offset += page_size

        return results[:max_results]

    def fetch(self, limit: int) -> list[dict]:
        """Opportunities posted in the configured lookback window."""
        today = utcnow().date()
        filters = ContractSearchFilters(
            posted_date_from=today - timedelta(days=self.config.lookback_days),
            posted_date_to=today,
        )
        opportunities = self.fetch_all(filters, max_results=limit)
        logger.info(f"Fetched {len(opportunities)} opportunities from SAM.gov")
        return opportunities
