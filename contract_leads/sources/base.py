"""
Base class for HTTP contract sources.

All HTTP adapters inherit from BaseSource and implement:
- fetch(limit): Get raw records from the source

Adapters never raise on "no data"; an empty list is a valid result.
Transport and auth failures raise the adapter's SourceError subclass so the
job runner can retry the whole run.
"""

import re
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from ..errors import SourceError
from ..models import ContractSource

logger = logging.getLogger(__name__)


class BaseSource(ABC):
    """
    Abstract base class for contract sources fetched over HTTP.

    Provides common functionality:
    - Shared requests.Session with a fixed user agent
    - Client-side rate limiting between consecutive requests
    - Request timeout and uniform error wrapping

    Subclasses must set:
    - source: The ContractSource enum value
    - error_class: SourceError subclass raised on transport failures

    Query parameters named in ``secret_params`` are masked in every logged
    or raised message.
    """

    source: ContractSource
    error_class: type[SourceError] = SourceError
    secret_params: tuple[str, ...] = ()

    def __init__(
        self,
        request_delay: float = 0.0,
        request_timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.request_delay = request_delay
        self.request_timeout = request_timeout
        self.session = session or requests.Session()

        self.session.headers.update({
            "User-Agent": "Mozilla/5.0 (compatible; ContractLeads/1.0)",
            "Accept-Language": "en-US,en;q=0.5",
        })

        self._last_request_time: float = 0

    def _rate_limit(self) -> None:
        """Enforce a minimum delay between consecutive requests."""
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self.request_delay:
            time.sleep(self.request_delay - elapsed)
        self._last_request_time = time.monotonic()

    def _redact(self, text: str) -> str:
        """Mask the values of secret query parameters in ``text``."""
        for name in self.secret_params:
            text = re.sub(rf"(\b{re.escape(name)}=)[^&\s'\"]+", r"\1REDACTED", text)
        return text

    def _get(self, url: str, allow_status: tuple[int, ...] = (), **kwargs) -> requests.Response:
        """
        Make a GET request with rate limiting and error handling.

        Args:
            url: The URL to fetch
            allow_status: Non-2xx status codes returned to the caller instead of raised
            **kwargs: Additional arguments to pass to session.get()

        Returns:
            Response object

        Raises:
            error_class: On connection errors or an unexpected status code
        """
        self._rate_limit()

        kwargs.setdefault("timeout", self.request_timeout)
        try:
            response = self.session.get(url, **kwargs)
        except requests.RequestException as e:
            # requests puts the full URL, query string included, in its messages
            reason = self._redact(str(e))
            logger.error(f"Request failed for {self.source.value}: {reason}")
            raise self.error_class(f"Failed to fetch from {self.source.value}: {reason}") from None

        if response.status_code in allow_status:
            return response
        if not response.ok:
            logger.error(f"{self.source.value} returned HTTP {response.status_code}")
            raise self.error_class(
                f"{self.source.value} error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                response=self._redact(response.text),
            )
        return response

    @abstractmethod
    def fetch(self, limit: int) -> list[Any]:
        """
        Fetch at most ``limit`` raw records from the source.

        Returns:
            List of raw records (not yet normalized)
        """
