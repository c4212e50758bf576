"""
Data models for Contract Leads.

Defines canonical dataclasses that all sources normalize into.
These models represent the unified schema for contracts, company profiles,
saved searches, alerts and sync bookkeeping.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from enum import Enum

from .errors import InvalidFiltersError
from .parsing import parse_iso_datetime
from .search_filters import ContractSearchFilters


class ContractSource(str, Enum):
    """Supported contract data sources."""
    SAM_GOV = "SAM.gov"                  # Federal structured API
    BOSTON_GOV = "BOSTON_GOV"            # Municipal bid board scrape
    COMMBUYS_EMAIL = "COMMBUYS_EMAIL"    # State procurement notification emails


class SubscriptionTier(str, Enum):
    """Billing tiers. Only the data effect of a tier is consumed here."""
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class AlertFrequency(str, Enum):
    """How often a single alert target may be notified."""
    REALTIME = "REALTIME"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"

    @property
    def min_hours(self) -> int:
        """Minimum gap between two sends for this frequency."""
        return ALERT_MIN_HOURS[self]


ALERT_MIN_HOURS: dict[AlertFrequency, int] = {
    AlertFrequency.REALTIME: 1,
    AlertFrequency.DAILY: 24,
    AlertFrequency.WEEKLY: 168,
}


# =============================================================================
# REFERENCE DATA
# =============================================================================

SET_ASIDE_TYPES = (
    "SBA", "SBP", "8A", "8AN", "HZC", "HZS", "SDVOSBC", "SDVOSBS",
    "WOSB", "WOSBSS", "EDWOSB", "EDWOSBSS", "LAS", "IEE", "ISBEE",
    "BICiv", "VSA", "VSB",
)

# Generic small business set-asides any small business may bid on
SMALL_BUSINESS_SET_ASIDES = ("SBA", "SBP")

NOTICE_TYPES = (
    "Presolicitation",
    "Combined Synopsis/Solicitation",
    "Sources Sought",
    "Special Notice",
    "Sale of Surplus Property",
    "Award Notice",
    "Intent to Bundle",
    "Justification",
)


@dataclass(frozen=True)
class Certification:
    """A company certification and the set-aside codes it qualifies for."""
    code: str
    label: str
    set_aside_codes: tuple[str, ...]


CERTIFICATION_TYPES: dict[str, Certification] = {
    cert.code: cert
    for cert in (
        Certification("8A", "8(a) Business Development", ("8A", "8AN")),
        Certification("HZC", "HUBZone", ("HZC", "HZS")),
        Certification("SDVOSB", "Service-Disabled Veteran-Owned", ("SDVOSBC", "SDVOSBS")),
        Certification("WOSB", "Woman-Owned Small Business", ("WOSB", "WOSBSS")),
        Certification("EDWOSB", "Economically Disadvantaged WOSB", ("EDWOSB", "EDWOSBSS")),
        Certification("SBA", "Small Business", ("SBA", "SBP")),
    )
}

US_STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}


# =============================================================================
# HELPERS
# =============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Any) -> Optional[datetime]:
    """Parse a timestamp column; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_iso_datetime(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_float(value: Any) -> Optional[float]:
    # Numeric columns come back from PostgREST as strings
    if value is None or value == "":
        return None
    return float(value)


# =============================================================================
# CONTRACTS
# =============================================================================

@dataclass
class ContractLead:
    """
    Canonical representation of a contract opportunity.

    This is the unified schema that all sources normalize into. ``source_id``
    is the natural key used for upserts; scraped and email sources prefix it
    with the source name so keys never collide across sources.
    """
    # Identity
    source_id: str
    source: ContractSource

    # Descriptive
    title: str
    agency: str
    description: Optional[str] = None
    sub_agency: Optional[str] = None
    solicitation_number: Optional[str] = None
    notice_type: Optional[str] = None
    contract_type: Optional[str] = None

    # Classification
    naics_codes: list[str] = field(default_factory=list)
    psc_code: Optional[str] = None
    set_aside_type: Optional[str] = None  # None means full and open competition

    # Commercial
    estimated_value: Optional[float] = None
    award_amount: Optional[float] = None

    # Timing
    posted_date: Optional[datetime] = None
    response_deadline: Optional[datetime] = None
    archive_date: Optional[datetime] = None

    # Location and lineage
    place_of_performance: Optional[str] = None
    source_url: Optional[str] = None

    # Lifecycle
    is_archived: bool = False
    archived_at: Optional[datetime] = None

    # Set by the store
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Fields overwritten on every sync that finds an existing record
    MUTABLE_FIELDS = (
        "title",
        "description",
        "agency",
        "sub_agency",
        "solicitation_number",
        "notice_type",
        "contract_type",
        "naics_codes",
        "psc_code",
        "set_aside_type",
        "estimated_value",
        "award_amount",
        "posted_date",
        "response_deadline",
        "archive_date",
        "place_of_performance",
        "source_url",
    )

    @property
    def contract_value(self) -> Optional[float]:
        """Estimated value, falling back to the award amount."""
        return self.estimated_value or self.award_amount

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        data = {
            "source_id": self.source_id,
            "source": self.source.value,
            "title": self.title,
            "description": self.description,
            "agency": self.agency,
            "sub_agency": self.sub_agency,
            "solicitation_number": self.solicitation_number,
            "notice_type": self.notice_type,
            "contract_type": self.contract_type,
            "naics_codes": list(self.naics_codes),
            "psc_code": self.psc_code,
            "set_aside_type": self.set_aside_type,
            "estimated_value": self.estimated_value,
            "award_amount": self.award_amount,
            "posted_date": _to_iso(self.posted_date),
            "response_deadline": _to_iso(self.response_deadline),
            "archive_date": _to_iso(self.archive_date),
            "place_of_performance": self.place_of_performance,
            "source_url": self.source_url,
            "is_archived": self.is_archived,
            "archived_at": _to_iso(self.archived_at),
        }
        if self.id:
            data["id"] = self.id
        return data

    def mutable_values(self) -> dict:
        """The subset of ``to_dict()`` written on update (full overwrite)."""
        data = self.to_dict()
        return {name: data[name] for name in self.MUTABLE_FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> "ContractLead":
        """Create from dictionary (e.g., from database)."""
        return cls(
            id=data.get("id"),
            source_id=data["source_id"],
            source=ContractSource(data["source"]),
            title=data["title"],
            agency=data.get("agency") or "Unknown",
            description=data.get("description"),
            sub_agency=data.get("sub_agency"),
            solicitation_number=data.get("solicitation_number"),
            notice_type=data.get("notice_type"),
            contract_type=data.get("contract_type"),
            naics_codes=list(data.get("naics_codes") or []),
            psc_code=data.get("psc_code"),
            set_aside_type=data.get("set_aside_type"),
            estimated_value=_to_float(data.get("estimated_value")),
            award_amount=_to_float(data.get("award_amount")),
            posted_date=_from_iso(data.get("posted_date")),
            response_deadline=_from_iso(data.get("response_deadline")),
            archive_date=_from_iso(data.get("archive_date")),
            place_of_performance=data.get("place_of_performance"),
            source_url=data.get("source_url"),
            is_archived=bool(data.get("is_archived", False)),
            archived_at=_from_iso(data.get("archived_at")),
            created_at=_from_iso(data.get("created_at")),
            updated_at=_from_iso(data.get("updated_at")),
        )


# =============================================================================
# SUBSCRIBERS
# =============================================================================

@dataclass
class UserAccount:
    """The slice of a user record the pipeline needs."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE

    @classmethod
    def from_dict(cls, data: dict) -> "UserAccount":
        return cls(
            id=data["id"],
            email=data.get("email"),
            name=data.get("name"),
            subscription_tier=SubscriptionTier(data.get("subscription_tier") or "FREE"),
        )


@dataclass
class CompanyProfile:
    """
    A subscriber's company profile used for match scoring.

    One profile per user. Created and updated only by an explicit save.
    """
    id: str
    user_id: str
    company_name: str
    naics_codes: list[str] = field(default_factory=list)
    certifications: list[str] = field(default_factory=list)
    preferred_states: list[str] = field(default_factory=list)
    min_contract_value: Optional[float] = None
    max_contract_value: Optional[float] = None

    # Alert settings
    alerts_enabled: bool = False
    alert_frequency: AlertFrequency = AlertFrequency.DAILY
    min_match_score: int = 50
    last_alert_sent_at: Optional[datetime] = None
    last_alert_matches: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_name": self.company_name,
            "naics_codes": list(self.naics_codes),
            "certifications": list(self.certifications),
            "preferred_states": list(self.preferred_states),
            "min_contract_value": self.min_contract_value,
            "max_contract_value": self.max_contract_value,
            "alerts_enabled": self.alerts_enabled,
            "alert_frequency": self.alert_frequency.value,
            "min_match_score": self.min_match_score,
            "last_alert_sent_at": _to_iso(self.last_alert_sent_at),
            "last_alert_matches": self.last_alert_matches,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CompanyProfile":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            company_name=data.get("company_name", ""),
            naics_codes=list(data.get("naics_codes") or []),
            certifications=list(data.get("certifications") or []),
            preferred_states=list(data.get("preferred_states") or []),
            min_contract_value=_to_float(data.get("min_contract_value")),
            max_contract_value=_to_float(data.get("max_contract_value")),
            alerts_enabled=bool(data.get("alerts_enabled", False)),
            alert_frequency=AlertFrequency(data.get("alert_frequency") or "DAILY"),
            min_match_score=int(data.get("min_match_score", 50)),
            last_alert_sent_at=_from_iso(data.get("last_alert_sent_at")),
            last_alert_matches=int(data.get("last_alert_matches") or 0),
        )


@dataclass
class SavedSearch:
    """A named, reusable filter predicate owned by a user."""
    id: str
    user_id: str
    name: str
    filters: ContractSearchFilters = field(default_factory=ContractSearchFilters)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "filters": self.filters.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SavedSearch":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            name=data.get("name", ""),
            filters=ContractSearchFilters.from_dict(data.get("filters") or {}),
        )


@dataclass
class SearchAlert:
    """
    Alert settings paired one-to-one with a saved search.

    Keyed by (user_id, saved_search_id).
    """
    id: str
    user_id: str
    saved_search_id: str
    frequency: AlertFrequency = AlertFrequency.DAILY
    is_active: bool = True
    last_sent_at: Optional[datetime] = None
    last_match_count: int = 0
    saved_search: Optional[SavedSearch] = None
    filters_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "saved_search_id": self.saved_search_id,
            "frequency": self.frequency.value,
            "is_active": self.is_active,
            "last_sent_at": _to_iso(self.last_sent_at),
            "last_match_count": self.last_match_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SearchAlert":
        saved = data.get("saved_search") or data.get("saved_searches")
        saved_search, filters_error = None, None
        if saved:
            # Filters are stored as untyped JSON; a bad row only disables its own alert
            try:
                saved_search = SavedSearch.from_dict(saved)
            except InvalidFiltersError as e:
                filters_error = str(e)
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            saved_search_id=data["saved_search_id"],
            frequency=AlertFrequency(data.get("frequency") or "DAILY"),
            is_active=bool(data.get("is_active", True)),
            last_sent_at=_from_iso(data.get("last_sent_at")),
            last_match_count=int(data.get("last_match_count") or 0),
            saved_search=saved_search,
            filters_error=filters_error,
        )


# =============================================================================
# SYNC BOOKKEEPING
# =============================================================================

@dataclass
class SyncState:
    """One row per sync type, upserted after each run."""
    sync_type: str
    last_synced_at: Optional[datetime] = None
    last_message_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "sync_type": self.sync_type,
            "last_synced_at": _to_iso(self.last_synced_at),
            "last_message_id": self.last_message_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        return cls(
            sync_type=data["sync_type"],
            last_synced_at=_from_iso(data.get("last_synced_at")),
            last_message_id=data.get("last_message_id"),
            metadata=data.get("metadata") or {},
        )
