"""
Normalization module for Contract Leads.

Maps raw records from each source into the canonical ContractLead schema.
Each source has different field names and formats - this module handles all
the mapping. Every normalizer is a total function: each canonical field gets
a value or an explicit None.
"""

import re
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Optional

from .models import ContractLead, ContractSource, SET_ASIDE_TYPES
from .parsing import BidListing, ParsedEmailBid, determine_notice_type, parse_iso_datetime

logger = logging.getLogger(__name__)


# =============================================================================
# SOURCE ID PREFIXES (scraped and email sources)
# =============================================================================

BOSTON_GOV_PREFIX = "BOSTON_GOV"
COMMBUYS_EMAIL_PREFIX = "COMMBUYS_EMAIL"

BOSTON_AGENCY = "City of Boston"
BOSTON_PLACE = "Boston, Massachusetts"
MASSACHUSETTS = "Massachusetts"


# =============================================================================
# SET-ASIDE MAPPING
# =============================================================================

# SAM.gov reports set-asides as a code plus a long description; older notices
# sometimes carry only the description.
SET_ASIDE_DESCRIPTIONS: dict[str, str] = {
    "total small business set-aside (far 19.5)": "SBA",
    "total small business set-aside": "SBA",
    "partial small business set-aside (far 19.5)": "SBP",
    "partial small business set-aside": "SBP",
    "8(a) set-aside (far 19.8)": "8A",
    "8(a) set-aside": "8A",
    "8(a) sole source (far 19.8)": "8AN",
    "8(a) sole source": "8AN",
    "historically underutilized business (hubzone) set-aside (far 19.13)": "HZC",
    "hubzone set-aside": "HZC",
    "historically underutilized business (hubzone) sole source (far 19.13)": "HZS",
    "hubzone sole source": "HZS",
    "service-disabled veteran-owned small business (sdvosb) set-aside (far 19.14)": "SDVOSBC",
    "sdvosb set-aside": "SDVOSBC",
    "service-disabled veteran-owned small business (sdvosb) sole source (far 19.14)": "SDVOSBS",
    "sdvosb sole source": "SDVOSBS",
    "women-owned small business (wosb) program set-aside (far 19.15)": "WOSB",
    "wosb set-aside": "WOSB",
    "women-owned small business (wosb) program sole source (far 19.15)": "WOSBSS",
    "wosb sole source": "WOSBSS",
    "economically disadvantaged wosb (edwosb) program set-aside (far 19.15)": "EDWOSB",
    "edwosb set-aside": "EDWOSB",
    "economically disadvantaged wosb (edwosb) program sole source (far 19.15)": "EDWOSBSS",
    "edwosb sole source": "EDWOSBSS",
    "local area set-aside (far 26.2)": "LAS",
    "indian economic enterprise (iee) set-aside (specific to department of interior and indian health services)": "IEE",
    "indian small business economic enterprise (isbee) set-aside (specific to department of interior and indian health services)": "ISBEE",
    "buy indian set-aside (specific to department of health and human services, indian health services)": "BICiv",
    "veteran-owned small business set-aside (specific to department of veterans affairs only)": "VSA",
    "veteran-owned small business sole source (specific to department of veterans affairs only)": "VSB",
}

_CANONICAL_BY_UPPER = {code.upper(): code for code in SET_ASIDE_TYPES}
NO_SET_ASIDE = {"", "NONE", "N/A", "NA"}


def normalize_set_aside(code: Optional[str], description: Optional[str] = None) -> Optional[str]:
    """
    Collapse a source set-aside code/description onto the canonical codes.

    ``NONE`` or empty means full and open competition (None). Unknown
    non-empty codes pass through upper-cased.
    """
    raw = (code or "").strip()
    if raw.upper() in _CANONICAL_BY_UPPER:
        return _CANONICAL_BY_UPPER[raw.upper()]

    for text in (description, raw):
        key = (text or "").strip().lower()
        if key in SET_ASIDE_DESCRIPTIONS:
            return SET_ASIDE_DESCRIPTIONS[key]

    if raw.upper() in NO_SET_ASIDE:
        return None
    return raw.upper()


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace and drop HTML entities; empty becomes None."""
    if not text:
        return None
    text = re.sub(r"&[a-z]+;", " ", str(text))
    text = re.sub(r"\s+", " ", text).strip()
    return text or None


def to_utc_datetime(value: Any) -> Optional[datetime]:
    """
    Convert a date, datetime or date string to an aware UTC datetime.

    Calendar dates become midnight UTC. Unparseable values give None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = parse_iso_datetime(text)
        except ValueError:
            # SAM.gov sometimes sends offsets without a colon (2026-01-21T17:00:00-0500)
            try:
                parsed = datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
            except ValueError:
                logger.debug(f"Unparseable date: {value!r}")
                return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(re.sub(r"[,$]", "", str(value)))
    except ValueError:
        return None


def split_agency_path(full_parent_path: Optional[str]) -> tuple[str, Optional[str]]:
    """
    Split a dotted organization path into agency and sub-agency.

    ``"DEPT OF DEFENSE.DEPT OF THE ARMY.AMC"`` gives
    ``("DEPT OF DEFENSE", "DEPT OF THE ARMY.AMC")``.
    """
    if not full_parent_path:
        return "Unknown", None
    parts = full_parent_path.split(".")
    agency = parts[0].strip() or "Unknown"
    sub_agency = ".".join(parts[1:]).strip() or None
    return agency, sub_agency


def format_place_of_performance(place: Optional[dict]) -> Optional[str]:
    """Join city, state and country names into one display string."""
    if not place:
        return None
    parts = [
        (place.get(key) or {}).get("name")
        for key in ("city", "state", "country")
    ]
    parts = [part for part in parts if part]
    return ", ".join(parts) if parts else None


def _self_link(links: Optional[list]) -> Optional[str]:
    for link in links or []:
        if link.get("rel") == "self" and link.get("href"):
            return link["href"]
    return None


# =============================================================================
# NORMALIZERS
# =============================================================================

def normalize_sam_opportunity(raw: dict) -> ContractLead:
    """
    Normalize a SAM.gov opportunity record.

    Args:
        raw: One element of ``opportunitiesData`` from the search API

    Returns:
        ContractLead keyed by the SAM.gov notice ID
    """
    if not raw.get("noticeId"):
        raise ValueError("SAM.gov opportunity has no noticeId")

    agency, sub_agency = split_agency_path(raw.get("fullParentPathName"))
    award = raw.get("award") or {}

    return ContractLead(
        source_id=raw["noticeId"],
        source=ContractSource.SAM_GOV,
        title=_clean_text(raw.get("title")) or raw["noticeId"],
        description=_clean_text(raw.get("description")),
        agency=agency,
        sub_agency=sub_agency,
        solicitation_number=raw.get("solicitationNumber") or None,
        notice_type=raw.get("type") or None,
        contract_type=raw.get("baseType") or None,
        naics_codes=[raw["naicsCode"]] if raw.get("naicsCode") else [],
        psc_code=raw.get("classificationCode") or None,
        set_aside_type=normalize_set_aside(
            raw.get("typeOfSetAside"), raw.get("typeOfSetAsideDescription")
        ),
        estimated_value=None,
        award_amount=_to_amount(award.get("amount")),
        posted_date=to_utc_datetime(raw.get("postedDate")),
        response_deadline=to_utc_datetime(raw.get("responseDeadLine")),
        archive_date=to_utc_datetime(raw.get("archiveDate")),
        place_of_performance=format_place_of_performance(raw.get("placeOfPerformance")),
        source_url=_self_link(raw.get("links")) or raw.get("uiLink") or None,
    )


def normalize_bid_listing(listing: BidListing) -> ContractLead:
    """Normalize one City of Boston bid board listing."""
    return ContractLead(
        source_id=f"{BOSTON_GOV_PREFIX}_{listing.bid_id}",
        source=ContractSource.BOSTON_GOV,
        title=_clean_text(listing.title) or listing.bid_id,
        description=_clean_text(listing.description),
        agency=listing.agency or BOSTON_AGENCY,
        solicitation_number=listing.bid_id,
        notice_type=listing.status or "Open",
        contract_type=_clean_text(listing.category),
        posted_date=to_utc_datetime(listing.posted_date),
        response_deadline=to_utc_datetime(listing.due_date),
        place_of_performance=BOSTON_PLACE,
        source_url=listing.url,
    )


def normalize_email_bid(bid: ParsedEmailBid, notice_type: Optional[str] = None) -> ContractLead:
    """
    Normalize a bid parsed from a COMMBUYS notification email.

    Args:
        bid: Parsed email fields
        notice_type: Notice type from the subject line, if already known
    """
    if notice_type is None:
        notice_type = determine_notice_type(bid.raw_subject)

    return ContractLead(
        source_id=f"{COMMBUYS_EMAIL_PREFIX}_{bid.bid_id}",
        source=ContractSource.COMMBUYS_EMAIL,
        title=_clean_text(bid.title) or bid.bid_id,
        description=_clean_text(bid.description),
        agency=_clean_text(bid.agency) or "Commonwealth of Massachusetts",
        solicitation_number=bid.bid_id,
        notice_type=notice_type,
        contract_type=_clean_text(bid.category),
        posted_date=to_utc_datetime(bid.posted_date),
        response_deadline=to_utc_datetime(bid.due_date),
        place_of_performance=MASSACHUSETTS,
        source_url=bid.url,
    )


NORMALIZERS: dict[ContractSource, Callable[[Any], ContractLead]] = {
    ContractSource.SAM_GOV: normalize_sam_opportunity,
    ContractSource.BOSTON_GOV: normalize_bid_listing,
    ContractSource.COMMBUYS_EMAIL: normalize_email_bid,
}


# =============================================================================
# BATCH NORMALIZATION
# =============================================================================

def _raw_key(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("noticeId", "unknown"))
    return str(getattr(raw, "bid_id", "unknown"))


def normalize_batch(source: ContractSource, raw_items: list) -> tuple[list[ContractLead], int]:
    """
    Normalize a batch of raw records from one source.

    A record that fails to normalize is logged and counted; it does not stop
    the rest of the batch.

    Returns:
        Tuple of (normalized contracts, number of failures)
    """
    normalize = NORMALIZERS[source]
    normalized = []
    failures = 0

    for raw in raw_items:
        try:
            normalized.append(normalize(raw))
        except Exception as e:
            failures += 1
            logger.warning(f"Failed to normalize {source.value} item {_raw_key(raw)}: {e}")

    logger.info(f"Normalized {len(normalized)}/{len(raw_items)} {source.value} items")
    return normalized, failures
