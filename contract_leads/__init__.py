"""
Contract Leads - Government contract opportunity alerts

Aggregates contract opportunities from SAM.gov, the City of Boston bid board
and COMMBUYS notification emails into one store, scores them against
subscriber company profiles, and emails alerts for saved searches and
profile matches.

Modules:
- config: Configuration and environment variables
- errors: Exception types
- models: Canonical data models (dataclasses)
- search_filters: Saved-search filter predicate
- db: Supabase integration for storage
- sources: Adapters for the contract sources
- parsing: Field extraction from bid board pages and notification emails
- normalization: Map source records to the canonical schema
- match_scoring: Explainable contract/profile match scores
- sync: Idempotent source syncs and the archive sweep
- alert_evaluation: Decide which alerts to send
- notifications: Render and send alert emails
- jobs: APScheduler-based workflow runner
- pipeline: Services and workflow registration
- scheduler: Long-running scheduler
- admin_server: Manual trigger server
"""

__version__ = "0.1.0"

# Convenient imports
from .models import (
    AlertFrequency,
    CompanyProfile,
    ContractLead,
    ContractSource,
    SavedSearch,
    SearchAlert,
    SubscriptionTier,
    SyncState,
    UserAccount,
)
from .search_filters import ContractSearchFilters
from .parsing import parse_bid_listings, parse_commbuys_email, parse_date
from .normalization import NORMALIZERS, normalize_batch
from .match_scoring import (
    ContractMatcher,
    MatchResult,
    calculate_match_score,
    score_and_sort_contracts,
)
from .sync import SyncOrchestrator, archive_expired_contracts
from .alert_evaluation import AlertEvaluator
from .notifications import EmailSender, NotificationDispatcher
from .jobs import JobRunner

__all__ = [
    # Models
    "AlertFrequency",
    "CompanyProfile",
    "ContractLead",
    "ContractSource",
    "SavedSearch",
    "SearchAlert",
    "SubscriptionTier",
    "SyncState",
    "UserAccount",
    "ContractSearchFilters",
    # Parsing & normalization
    "parse_bid_listings",
    "parse_commbuys_email",
    "parse_date",
    "NORMALIZERS",
    "normalize_batch",
    # Match scoring
    "ContractMatcher",
    "MatchResult",
    "calculate_match_score",
    "score_and_sort_contracts",
    # Sync & alerts
    "SyncOrchestrator",
    "archive_expired_contracts",
    "AlertEvaluator",
    "EmailSender",
    "NotificationDispatcher",
    "JobRunner",
]
