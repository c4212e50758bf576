"""
Supabase database integration module.

Handles all database operations:
- Contract lead lookup, creation, full-overwrite update and archival
- Alert candidate queries
- Saved searches, search alerts and company profiles
- Compare-and-swap claims on alert send timestamps
- Sync bookkeeping

Tables required:
- contract_leads: Normalized contracts (unique source_id)
- company_profiles: One scoring profile per user
- saved_searches: Named filter predicates
- alerts: Alert settings per saved search (unique user_id, saved_search_id)
- users: Subscribers (email, subscription_tier)
- sync_states: One row per sync type
"""

import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar

from supabase import create_client, Client

from .config import SupabaseConfig
from .errors import ConfigurationError
from .models import (
    CompanyProfile,
    ContractLead,
    ContractSource,
    SavedSearch,
    SearchAlert,
    SyncState,
    UserAccount,
    utcnow,
)
from .search_filters import ContractSearchFilters

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _parse_rows(rows: list[dict], parse: Callable[[dict], T], table: str) -> list[T]:
    """Map rows to models one by one; a malformed row is logged and dropped."""
    parsed = []
    for row in rows:
        try:
            parsed.append(parse(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {table} row {row.get('id')}: {e}")
    return parsed


class Database:
    """
    Supabase database client wrapper.

    Provides methods for all database operations needed by the sync,
    archive and alerting workflows.
    """

    def __init__(self, config: Optional[SupabaseConfig] = None, client: Optional[Client] = None):
        """Initialize Supabase client."""
        if client is not None:
            self._client = client
            return
        if config is None or not config.url or not config.key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
        self._client = create_client(config.url, config.key)

    @property
    def client(self) -> Client:
        """Get the Supabase client."""
        return self._client

    # =========================================================================
    # CONTRACT OPERATIONS
    # =========================================================================

    def get_contract_by_source_id(self, source_id: str) -> Optional[ContractLead]:
        """Look up a contract by its natural key."""
        result = self._client.table("contract_leads").select("*").eq("source_id", source_id).execute()
        return ContractLead.from_dict(result.data[0]) if result.data else None

    def create_contract(self, contract: ContractLead) -> ContractLead:
        """Insert a new, unarchived contract."""
        data = contract.to_dict()
        data.pop("id", None)
        data["is_archived"] = False
        data["archived_at"] = None

        result = self._client.table("contract_leads").insert(data).execute()
        logger.info(f"Created contract: {contract.source_id}")
        return ContractLead.from_dict(result.data[0])

    def update_contract(self, contract_id: str, contract: ContractLead) -> None:
        """
        Overwrite every mutable field of an existing contract.

        Fields the source no longer reports are written as None. Archive
        state and identity are left alone.
        """
        data = contract.mutable_values()
        data["updated_at"] = utcnow().isoformat()
        self._client.table("contract_leads").update(data).eq("id", contract_id).execute()
        logger.debug(f"Updated contract: {contract.source_id}")

    def get_contracts_by_ids(self, contract_ids: list[str]) -> list[ContractLead]:
        """Fetch contracts by ID; order of the result is not defined."""
        if not contract_ids:
            return []
        result = self._client.table("contract_leads").select("*").in_("id", contract_ids).execute()
        return [ContractLead.from_dict(row) for row in result.data]

    def find_candidate_contracts(
        self,
        since: datetime,
        now: datetime,
        limit: Optional[int] = None,
    ) -> list[ContractLead]:
        """
        Alert candidates: posted since ``since``, still open, newest first.

        A contract is open when it is not archived and its response deadline
        is either unknown or not yet passed.
        """
        query = (
            self._client.table("contract_leads")
            .select("*")
            .eq("is_archived", False)
            .gte("posted_date", since.isoformat())
            .or_(f"response_deadline.is.null,response_deadline.gte.{now.isoformat()}")
            .order("posted_date", desc=True)
        )
        if limit:
            query = query.limit(limit)
        result = query.execute()
        return _parse_rows(result.data, ContractLead.from_dict, "contract_leads")

    def archive_expired_contracts(self, now: datetime) -> int:
        """
        Archive every unarchived contract whose response deadline or archive
        date is strictly before ``now``, in one update.

        Returns:
            Number of rows archived
        """
        stamp = now.isoformat()
        result = (
            self._client.table("contract_leads")
            .update({"is_archived": True, "archived_at": stamp})
            .eq("is_archived", False)
            .or_(f"response_deadline.lt.{stamp},archive_date.lt.{stamp}")
            .execute()
        )
        return len(result.data)

    def count_contracts(self, source: Optional[ContractSource] = None) -> int:
        """Count stored contracts, optionally for one source."""
        query = self._client.table("contract_leads").select("id", count="exact")
        if source:
            query = query.eq("source", source.value)
        result = query.execute()
        return result.count or 0

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        """Get user by ID."""
        result = self._client.table("users").select("*").eq("id", user_id).execute()
        return UserAccount.from_dict(result.data[0]) if result.data else None

    # =========================================================================
    # SAVED SEARCH & ALERT OPERATIONS
    # =========================================================================

    def save_saved_search(
        self,
        user_id: str,
        name: str,
        filters: dict,
        search_id: Optional[str] = None,
    ) -> SavedSearch:
        """
        Create or update a saved search.

        Filters are validated before anything is written.

        Raises:
            InvalidFiltersError: If the filter payload is malformed
        """
        validated = ContractSearchFilters.from_dict(filters)
        data = {"user_id": user_id, "name": name, "filters": validated.to_dict()}

        if search_id:
            result = self._client.table("saved_searches").update(data).eq("id", search_id).execute()
        else:
            result = self._client.table("saved_searches").insert(data).execute()

        saved = SavedSearch.from_dict(result.data[0])
        logger.info(f"Saved search {saved.id} for user {user_id}")
        return saved

    def get_active_alerts(self, saved_search_id: Optional[str] = None) -> list[SearchAlert]:
        """Active search alerts with their saved search, optionally for one search."""
        query = self._client.table("alerts").select("*, saved_searches(*)").eq("is_active", True)
        if saved_search_id:
            query = query.eq("saved_search_id", saved_search_id)
        result = query.execute()
        return _parse_rows(result.data, SearchAlert.from_dict, "alerts")

    def get_alert(self, alert_id: str) -> Optional[SearchAlert]:
        """Get an alert with its saved search."""
        result = self._client.table("alerts").select("*, saved_searches(*)").eq("id", alert_id).execute()
        return SearchAlert.from_dict(result.data[0]) if result.data else None

    def claim_alert_send(
        self,
        alert_id: str,
        previous_sent_at: Optional[datetime],
        sent_at: datetime,
        match_count: int,
    ) -> bool:
        """
        Compare-and-swap the alert's send timestamp.

        The update only applies if ``last_sent_at`` still holds the value the
        caller read. Returns False if another run got there first.
        """
        query = self._client.table("alerts").update({
            "last_sent_at": sent_at.isoformat(),
            "last_match_count": match_count,
        }).eq("id", alert_id)
        if previous_sent_at is None:
            query = query.is_("last_sent_at", "null")
        else:
            query = query.eq("last_sent_at", previous_sent_at.isoformat())
        result = query.execute()
        return bool(result.data)

    # =========================================================================
    # COMPANY PROFILE OPERATIONS
    # =========================================================================

    def get_profile(self, profile_id: str) -> Optional[CompanyProfile]:
        result = self._client.table("company_profiles").select("*").eq("id", profile_id).execute()
        return CompanyProfile.from_dict(result.data[0]) if result.data else None

    def get_alert_enabled_profiles(self) -> list[CompanyProfile]:
        """Profiles that opted in to match alerts."""
        result = self._client.table("company_profiles").select("*").eq("alerts_enabled", True).execute()
        return _parse_rows(result.data, CompanyProfile.from_dict, "company_profiles")

    def claim_profile_alert_send(
        self,
        profile_id: str,
        previous_sent_at: Optional[datetime],
        sent_at: datetime,
        match_count: int,
    ) -> bool:
        """Compare-and-swap the profile's alert timestamp (see claim_alert_send)."""
        query = self._client.table("company_profiles").update({
            "last_alert_sent_at": sent_at.isoformat(),
            "last_alert_matches": match_count,
        }).eq("id", profile_id)
        if previous_sent_at is None:
            query = query.is_("last_alert_sent_at", "null")
        else:
            query = query.eq("last_alert_sent_at", previous_sent_at.isoformat())
        result = query.execute()
        return bool(result.data)

    # =========================================================================
    # SYNC STATE OPERATIONS
    # =========================================================================

    def get_sync_state(self, sync_type: str) -> Optional[SyncState]:
        result = self._client.table("sync_states").select("*").eq("sync_type", sync_type).execute()
        return SyncState.from_dict(result.data[0]) if result.data else None

    def upsert_sync_state(self, state: SyncState) -> None:
        """Insert or update the bookkeeping row for a sync type."""
        data = state.to_dict()

        existing = self._client.table("sync_states").select("sync_type").eq("sync_type", state.sync_type).execute()

        if existing.data:
            self._client.table("sync_states").update(data).eq("sync_type", state.sync_type).execute()
        else:
            self._client.table("sync_states").insert(data).execute()

        logger.info(f"Updated sync state: {state.sync_type}")
