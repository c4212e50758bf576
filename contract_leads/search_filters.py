"""
Saved-search filter predicates.

Saved searches store their filters as JSON. Payloads are validated when they
are written (and again when read back) so the alert evaluator never works
with a loosely-typed dict. All filters are optional and AND-combined; the
keyword matches title OR description.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Any, Optional, TYPE_CHECKING

from .errors import InvalidFiltersError
from .parsing import parse_iso_datetime

if TYPE_CHECKING:
    from .models import ContractLead


# Stored payloads use the camelCase keys of the web app
CAMEL_CASE_KEYS = {
    "keyword": "keyword",
    "naicsCodes": "naics_codes",
    "agency": "agency",
    "setAsideType": "set_aside_type",
    "noticeType": "notice_type",
    "postedDateFrom": "posted_date_from",
    "postedDateTo": "posted_date_to",
    "responseDeadlineFrom": "response_deadline_from",
    "responseDeadlineTo": "response_deadline_to",
    "estimatedValueMin": "estimated_value_min",
    "estimatedValueMax": "estimated_value_max",
    "placeOfPerformance": "place_of_performance",
}
SNAKE_TO_CAMEL = {snake: camel for camel, snake in CAMEL_CASE_KEYS.items()}

TEXT_FIELDS = ("keyword", "agency", "set_aside_type", "notice_type", "place_of_performance")
DATE_FIELDS = ("posted_date_from", "posted_date_to", "response_deadline_from", "response_deadline_to")
VALUE_FIELDS = ("estimated_value_min", "estimated_value_max")


def _parse_bound(name: str, value: Any) -> date:
    """Date bounds are calendar dates; a full timestamp keeps only its date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidFiltersError(f"{name} must be an ISO date string")
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return parse_iso_datetime(text).date()
    except ValueError:
        raise InvalidFiltersError(f"{name} is not a valid date: {value!r}") from None


def _utc_date(value: datetime) -> date:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


@dataclass
class ContractSearchFilters:
    """Validated filter predicate for contract searches and alerts."""
    keyword: Optional[str] = None
    naics_codes: list[str] = field(default_factory=list)
    agency: Optional[str] = None
    set_aside_type: Optional[str] = None
    notice_type: Optional[str] = None
    posted_date_from: Optional[date] = None
    posted_date_to: Optional[date] = None
    response_deadline_from: Optional[date] = None
    response_deadline_to: Optional[date] = None
    estimated_value_min: Optional[float] = None
    estimated_value_max: Optional[float] = None
    place_of_performance: Optional[str] = None

    def __post_init__(self):
        self.validate()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self) -> None:
        """Raise InvalidFiltersError if any field has the wrong shape."""
        for name in TEXT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise InvalidFiltersError(f"{name} must be a string")
            value = value.strip()
            setattr(self, name, value or None)

        if not isinstance(self.naics_codes, (list, tuple)):
            raise InvalidFiltersError("naics_codes must be a list of strings")
        codes = []
        for code in self.naics_codes:
            if not isinstance(code, str) or not code.strip().isdigit():
                raise InvalidFiltersError(f"Invalid NAICS code: {code!r}")
            codes.append(code.strip())
        self.naics_codes = codes

        for name in DATE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, _parse_bound(name, value))

        for name in VALUE_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidFiltersError(f"{name} must be a number")
            if value < 0:
                raise InvalidFiltersError(f"{name} must not be negative")
            setattr(self, name, float(value))

        ranges = (
            ("estimated_value_min", "estimated_value_max"),
            ("posted_date_from", "posted_date_to"),
            ("response_deadline_from", "response_deadline_to"),
        )
        for low_name, high_name in ranges:
            low, high = getattr(self, low_name), getattr(self, high_name)
            if low is not None and high is not None and low > high:
                raise InvalidFiltersError(f"{low_name} is after {high_name}")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ContractSearchFilters":
        """
        Build filters from a stored or submitted payload.

        Accepts camelCase (web app) or snake_case keys. Unknown keys are
        rejected rather than silently ignored.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidFiltersError("Filters must be an object")

        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise InvalidFiltersError(f"Unknown filter: {key}")
            if value is None or value == "" or value == []:
                continue
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        """Stored form (camelCase keys, unset filters omitted)."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            if isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            data[SNAKE_TO_CAMEL[f.name]] = value
        return data

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()

    # =========================================================================
    # PREDICATE
    # =========================================================================

    def matches(self, contract: "ContractLead") -> bool:
        """True if the contract passes every filter that is set."""
        if self.keyword:
            needle = self.keyword.lower()
            haystacks = [contract.title or "", contract.description or ""]
            if not any(needle in text.lower() for text in haystacks):
                return False

        if self.naics_codes and not set(self.naics_codes) & set(contract.naics_codes):
            return False

        if self.agency and self.agency.lower() not in (contract.agency or "").lower():
            return False

        if self.set_aside_type and contract.set_aside_type != self.set_aside_type:
            return False

        if self.notice_type and contract.notice_type != self.notice_type:
            return False

        if self.place_of_performance:
            location = (contract.place_of_performance or "").lower()
            if self.place_of_performance.lower() not in location:
                return False

        if not self._in_date_range(contract.posted_date, self.posted_date_from, self.posted_date_to):
            return False
        if not self._in_date_range(
            contract.response_deadline, self.response_deadline_from, self.response_deadline_to
        ):
            return False

        if self.estimated_value_min is not None or self.estimated_value_max is not None:
            value = contract.estimated_value
            if value is None:
                return False
            if self.estimated_value_min is not None and value < self.estimated_value_min:
                return False
            if self.estimated_value_max is not None and value > self.estimated_value_max:
                return False

        return True

    @staticmethod
    def _in_date_range(
        value: Optional[datetime],
        low: Optional[date],
        high: Optional[date],
    ) -> bool:
        if low is None and high is None:
            return True
        if value is None:
            return False
        day = _utc_date(value)
        if low is not None and day < low:
            return False
        if high is not None and day > high:
            return False
        return True
