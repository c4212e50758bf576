"""
Text parsing for scraped bid listings and procurement notification emails.

Neither source has a fixed format, so every field is extracted by its own
function that tries an ordered list of patterns and falls back to the next
one. Partial extraction is fine; only a missing bid identifier makes an
email unparseable.

Everything here is pure text-in/struct-out with no I/O.
"""

import re
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


# =============================================================================
# PARSED RECORDS
# =============================================================================

@dataclass
class ParsedEmailBid:
    """Fields extracted from one COMMBUYS notification email."""
    bid_id: str
    title: str
    agency: str
    raw_subject: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    posted_date: Optional[date] = None
    url: Optional[str] = None
    category: Optional[str] = None


@dataclass
class BidListing:
    """One entry from the municipal bid board listing page."""
    bid_id: str
    title: str
    url: str
    agency: str = "City of Boston"
    status: Optional[str] = "Open"
    description: Optional[str] = None
    category: Optional[str] = None
    posted_date: Optional[date] = None
    due_date: Optional[date] = None


# =============================================================================
# DATES
# =============================================================================

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{2,4})")
NATURAL_DATE = re.compile(r"([A-Za-z]+)\.?\s+(\d{1,2}),?\s+(\d{4})")
ISO_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
ISO_FRACTION = re.compile(r"([T ]\d{2}:\d{2}:\d{2})\.(\d+)")
TRAILING_Z = re.compile(r"[Zz]$")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: Optional[str]) -> Optional[date]:
    """
    Parse a loosely formatted date.

    Supports ``MM/DD/YYYY`` and ``MM/DD/YY`` (two-digit years above 50 are
    1900s), ``Month D, YYYY`` with full or abbreviated month names, and ISO
    ``YYYY-MM-DD``. Anything else, including impossible dates, gives None.

    Args:
        text: Raw date text, possibly with surrounding words or a time

    Returns:
        The calendar date or None
    """
    if not text:
        return None
    cleaned = text.strip()

    match = SLASH_DATE.search(cleaned)
    if match:
        month, day, year = (int(part) for part in match.groups())
        if year < 100:
            year += 1900 if year > 50 else 2000
        return _safe_date(year, month, day)

    match = NATURAL_DATE.search(cleaned)
    if match:
        month = MONTHS.get(match.group(1).lower())
        if month:
            return _safe_date(int(match.group(3)), month, int(match.group(2)))

    match = ISO_DATE.search(cleaned)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    return None


def parse_iso_datetime(text: str) -> datetime:
    """
    ``datetime.fromisoformat`` that also accepts a trailing ``Z`` and any
    number of fractional-second digits.

    Postgres trims trailing zeros from fractions (``12:00:00.12345+00:00``),
    which ``fromisoformat`` rejects before Python 3.11.

    Raises:
        ValueError: If the text is not an ISO timestamp
    """
    cleaned = TRAILING_Z.sub("+00:00", text.strip())
    cleaned = ISO_FRACTION.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", cleaned)
    return datetime.fromisoformat(cleaned)


# =============================================================================
# EMAIL FIELD EXTRACTORS
# =============================================================================

# COMMBUYS bid IDs look like BD-24-1234-ABC12-12345; most specific first
BID_ID_PATTERNS = [
    re.compile(r"BD-\d{2,4}-\d{4,6}-[A-Z0-9]+-\d+", re.IGNORECASE),
    re.compile(r"BD-\d{2,4}-\d{4,6}-[A-Z0-9]+", re.IGNORECASE),
    re.compile(r"BD-[\w-]+", re.IGNORECASE),
]

SUBJECT_PREFIX = re.compile(
    r"^\s*Bid\s+(?:Notification|Amended|Awarded|Cancell?ed)\s+AND\s+",
    re.IGNORECASE,
)

TITLE_SELECTORS = "h1, h2, .title, [class*='title'], [class*='subject']"
AGENCY_SELECTORS = "[class*='org'], [class*='agency'], [class*='department']"

AGENCY_PATTERNS = [
    re.compile(r"(?:Organization|Agency|Department|Issuing\s+Agency):\s*([^\n<]+)", re.IGNORECASE),
    re.compile(r"(?:From|Issued\s+by):\s*([^\n<]+)", re.IGNORECASE),
]
DEFAULT_AGENCY = "Commonwealth of Massachusetts"

DUE_DATE_PATTERNS = [
    re.compile(
        r"(?:Due|Deadline|Close[sd]?\s*Date|Response\s+Due|Submission\s+Due)(?:\s+Date)?:\s*([^\n<]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(\d{1,2}/\d{1,2}/\d{2,4})\s*(?:at\s+\d{1,2}:\d{2})?"),
]
POSTED_DATE_PATTERNS = [
    re.compile(r"(?:Posted|Published|Open\s+Date)(?:\s+Date)?:\s*([^\n<]+)", re.IGNORECASE),
]
CATEGORY_PATTERNS = [
    re.compile(r"(?:Category|Type|Classification):\s*([^\n<]+)", re.IGNORECASE),
]
DESCRIPTION_PATTERNS = [
    re.compile(
        r"(?:Description|Summary|Overview):\s*([^\n]+(?:\n(?![A-Z][a-z]+:)[^\n]+)*)",
        re.IGNORECASE,
    ),
]
MAX_DESCRIPTION_LENGTH = 500


def _first_group(patterns: list[re.Pattern], text: str) -> Optional[str]:
    """Return the first capture of the first pattern that matches."""
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = (match.group(1) if match.groups() else match.group(0)).strip()
            if value:
                return value
    return None


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def email_text(html: str) -> str:
    """Visible text of an email body, one block per line."""
    return _soup(html).get_text("\n")


def extract_bid_id(text: str, subject: str = "") -> Optional[str]:
    """Find the bid identifier in the body, then in the subject line."""
    for source in (text, subject):
        if not source:
            continue
        for pattern in BID_ID_PATTERNS:
            match = pattern.search(source)
            if match:
                return match.group(0).upper()
    return None


def extract_title(subject: str, html: str, bid_id: str) -> str:
    """
    Title from the subject with the notification prefix removed.

    Falls back to a heading in the body, then to the bid ID itself.
    """
    title = SUBJECT_PREFIX.sub("", subject or "").strip()
    if title and title != bid_id:
        return title

    soup = _soup(html)
    heading = soup.select_one(TITLE_SELECTORS)
    candidate = heading.get_text(" ", strip=True) if heading else ""
    if not candidate:
        bold = soup.find(["strong", "b"])
        candidate = bold.get_text(" ", strip=True) if bold else ""
    if len(candidate) > 10:
        return candidate
    return bid_id


def extract_agency(html: str, text: str) -> str:
    """Issuing organization from a styled element, labelled text, or the default."""
    element = _soup(html).select_one(AGENCY_SELECTORS)
    if element:
        value = element.get_text(" ", strip=True)
        if len(value) > 3:
            return value
    return _first_group(AGENCY_PATTERNS, text) or DEFAULT_AGENCY


def extract_due_date(text: str) -> Optional[date]:
    return parse_date(_first_group(DUE_DATE_PATTERNS, text))


def extract_posted_date(text: str) -> Optional[date]:
    return parse_date(_first_group(POSTED_DATE_PATTERNS, text))


def extract_detail_url(html: str) -> Optional[str]:
    """Link to the bid detail page, or any COMMBUYS link as a fallback."""
    links = [a.get("href") for a in _soup(html).select("a[href*='commbuys.com']")]
    links = [href for href in links if href]
    for href in links:
        if "bidDetail" in href:
            return href
    return links[0] if links else None


def extract_category(text: str) -> Optional[str]:
    return _first_group(CATEGORY_PATTERNS, text)


def extract_description(text: str) -> Optional[str]:
    description = _first_group(DESCRIPTION_PATTERNS, text)
    if description:
        return description[:MAX_DESCRIPTION_LENGTH]
    return None


def determine_notice_type(subject: str) -> str:
    """Map the notification subject onto a notice type."""
    subject_lower = (subject or "").lower()
    if "awarded" in subject_lower:
        return "Award"
    if "amended" in subject_lower:
        return "Amendment"
    if "cancelled" in subject_lower or "canceled" in subject_lower:
        return "Cancelled"
    if "notification" in subject_lower:
        return "Solicitation"
    return "Open"


def parse_commbuys_email(html: str, subject: str) -> Optional[ParsedEmailBid]:
    """
    Parse a COMMBUYS notification email.

    Subjects look like ``Bid Notification AND {short description}`` (also
    Amended/Awarded/Cancelled). The body usually carries the bid number,
    organization, dates and a link to the bid detail page.

    Args:
        html: Email body (HTML or plain text)
        subject: Email subject line

    Returns:
        ParsedEmailBid, or None if no bid ID could be found
    """
    text = email_text(html)
    bid_id = extract_bid_id(text, subject)
    if not bid_id:
        logger.warning(f"Could not extract bid ID from COMMBUYS email: {subject!r}")
        return None

    return ParsedEmailBid(
        bid_id=bid_id,
        title=extract_title(subject, html, bid_id),
        agency=extract_agency(html, text),
        raw_subject=subject,
        description=extract_description(text),
        due_date=extract_due_date(text),
        posted_date=extract_posted_date(text),
        url=extract_detail_url(html),
        category=extract_category(text),
    )


# =============================================================================
# BID BOARD LISTINGS (markdown)
# =============================================================================

# [Speed Radar Feedback Signs](https://www.boston.gov/bid-listings/ev00016951 "Speed Radar Feedback Signs ")
LISTING_LINK = re.compile(
    r"^\[([^\]]+)\]\((https?://(?:www\.)?boston\.gov)/bid-listings/([^\s)\"]+)"
)
POSTED_LABEL = re.compile(r"^-?\s*Posted:?\s*$", re.IGNORECASE)
POSTED_INLINE = re.compile(r"^-?\s*Posted:?\s*(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE)
DUE_LABEL = re.compile(r"^-?\s*Due:?\s*$", re.IGNORECASE)
DUE_INLINE = re.compile(r"^-?\s*Due:?\s*(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE)
LEADING_DATE = re.compile(r"^(\d{1,2}/\d{1,2}/\d{2,4})")


def listing_bid_id(url_slug: str) -> str:
    """EV numbers are used as-is; other slugs get a BOSTON- prefix."""
    slug = url_slug.strip()
    if slug.upper().startswith("EV"):
        return slug.upper()
    return f"BOSTON-{slug}"


def _labelled_date(
    lines: list[str],
    index: int,
    inline: re.Pattern,
    label: re.Pattern,
) -> Optional[date]:
    """Date on the label line itself or on the line that follows the label."""
    line = lines[index]
    match = inline.match(line)
    if match:
        return parse_date(match.group(1))
    if label.match(line) and index + 1 < len(lines):
        match = LEADING_DATE.match(lines[index + 1])
        if match:
            return parse_date(match.group(1))
    return None


def parse_bid_listings(content: str) -> list[BidListing]:
    """
    Parse the bid board page rendered as markdown.

    Each bid starts with a link to ``/bid-listings/<slug>`` followed by
    ``- Posted:`` and ``- Due:`` lines, the date either inline or on the next
    line. Contact-email links that also point at the bid page are skipped.

    Args:
        content: Markdown text of the listing page

    Returns:
        List of BidListing in page order
    """
    listings: list[BidListing] = []
    lines = [line.strip() for line in (content or "").splitlines()]
    current: Optional[BidListing] = None

    for index, line in enumerate(lines):
        link = LISTING_LINK.match(line)
        if link:
            title = link.group(1).strip()
            if "@" in title:
                continue
            if current:
                listings.append(current)
            slug = link.group(3).strip()
            current = BidListing(
                bid_id=listing_bid_id(slug),
                title=title,
                url=f"{link.group(2)}/bid-listings/{slug}",
            )
            continue

        if current is None:
            continue

        if current.posted_date is None:
            current.posted_date = _labelled_date(lines, index, POSTED_INLINE, POSTED_LABEL)
        if current.due_date is None:
            current.due_date = _labelled_date(lines, index, DUE_INLINE, DUE_LABEL)

    if current:
        listings.append(current)

    logger.debug(f"Parsed {len(listings)} bid listings")
    return listings
