"""
City of Boston bid board scraper.

The listing page at boston.gov/bid-listings is plain server-rendered HTML.
It is flattened into link-preserving markdown text so the line-oriented
bid listing parser can walk it:

    [Speed Radar Feedback Signs](https://www.boston.gov/bid-listings/ev00016951)
    - Posted:
    01/05/2026 - 9:00am
    - Due:01/21/2026 - 12:00pm
"""

import re
import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .base import BaseSource
from ..config import BidBoardConfig
from ..errors import BidBoardError
from ..models import ContractSource
from ..parsing import BidListing, parse_bid_listings

logger = logging.getLogger(__name__)

BLOCK_TAGS = [
    "p", "div", "section", "article", "header", "footer", "tr",
    "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li", "dt", "dd",
]


def html_to_markdown(html: str, base_url: str) -> str:
    """
    Flatten an HTML page into markdown-ish text.

    Links become ``[text](absolute-url)`` on their own line, list items are
    prefixed with ``- `` and every block element ends a line.

    Args:
        html: Page HTML
        base_url: Used to resolve relative links

    Returns:
        Text with one non-empty line per block
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for tag in soup(["script", "style", "noscript", "svg"]):
        tag.decompose()

    for link in soup.find_all("a", href=True):
        text = link.get_text(" ", strip=True)
        if not text:
            continue
        link.replace_with(f"\n[{text}]({urljoin(base_url, link['href'])})\n")

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for item in soup.find_all("li"):
        item.insert(0, "\n- ")
    for block in soup.find_all(BLOCK_TAGS):
        block.insert_after("\n")

    lines = (re.sub(r"[ \t\xa0]+", " ", line).strip() for line in soup.get_text().splitlines())
    return "\n".join(line for line in lines if line)


class BostonBidBoardScraper(BaseSource):
    """
    Scraper for the City of Boston bid listings page.

    Only the listing page is fetched; detail pages are not crawled.
    """

    source = ContractSource.BOSTON_GOV
    error_class = BidBoardError

    def __init__(self, config: BidBoardConfig, request_timeout: int = 30, session=None):
        super().__init__(
            request_delay=config.request_delay,
            request_timeout=request_timeout,
            session=session,
        )
        self.config = config
        self.session.headers["Accept"] = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"

    def fetch_markdown(self) -> str:
        """Fetch the listing page as markdown text."""
        response = self._get(self.config.listings_url)
        return html_to_markdown(response.text, self.config.base_url)

    def fetch(self, limit: int) -> list[BidListing]:
        """
        Fetch open bids from the listing page.

        Args:
            limit: Maximum number of listings to return

        Returns:
            Listings in page order
        """
        logger.info(f"Scraping Boston bid board: {self.config.listings_url}")
        content = self.fetch_markdown()
        listings = parse_bid_listings(content)
        if not listings:
            logger.warning("No bid listings found on the Boston bid board page")
        logger.info(f"Found {len(listings)} Boston bid listings (returning up to {limit})")
        return listings[:limit]
