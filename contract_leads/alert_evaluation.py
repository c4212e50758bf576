"""
Alert evaluation for saved searches and company profiles.

For every alert target (an active saved-search alert, or a profile with
alerts enabled):

1. Skip FREE-tier users.
2. Skip if the last send is more recent than the frequency allows.
3. Load open contracts posted since the last send (or a lookback window).
4. Saved searches filter candidates; profiles score them.
5. If anything matched, claim the send by swapping the last-sent timestamp,
   then emit a send event with the matched contract IDs.

The claim is a compare-and-swap on the timestamp that was read in step 2, so
two overlapping evaluations cannot both dispatch the same alert. Each target
is evaluated in isolation; one failing target does not stop the rest.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from .config import AppConfig
from .db import Database
from .jobs import ALERTS_SEND, PROFILE_ALERTS_SEND
from .match_scoring import ContractMatcher
from .models import (
    AlertFrequency,
    CompanyProfile,
    SearchAlert,
    SubscriptionTier,
    UserAccount,
    utcnow,
)

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def send(self, event: str, data: Optional[dict] = None) -> Any: ...


def throttle_reason(
    last_sent_at: Optional[datetime],
    frequency: AlertFrequency,
    now: datetime,
) -> Optional[str]:
    """
    Reason to hold back a send, or None if the target may be notified.

    Args:
        last_sent_at: When the target was last notified
        frequency: The target's alert frequency
        now: Evaluation time
    """
    if last_sent_at is None:
        return None
    hours = (now - last_sent_at).total_seconds() / 3600
    min_hours = frequency.min_hours
    if hours < min_hours:
        return f"Too soon ({hours:.1f}h < {min_hours}h)"
    return None


def tier_reason(user: Optional[UserAccount]) -> Optional[str]:
    if user is None:
        return "User not found"
    if user.subscription_tier == SubscriptionTier.FREE:
        return "Free tier"
    return None


class AlertEvaluator:
    """
    Decides which alert targets get notified and emits send events.

    Usage:
        evaluator = AlertEvaluator(db, runner, settings.app)
        evaluator.check_search_alerts()
        evaluator.check_profile_alerts()
    """

    def __init__(
        self,
        db: Database,
        events: EventSink,
        config: Optional[AppConfig] = None,
        matcher: Optional[ContractMatcher] = None,
    ):
        self.db = db
        self.events = events
        self.config = config or AppConfig()
        self.matcher = matcher or ContractMatcher()

    # =========================================================================
    # SAVED SEARCH ALERTS
    # =========================================================================

    def check_search_alerts(
        self,
        saved_search_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Evaluate active saved-search alerts.

        Args:
            saved_search_id: Only evaluate the alert for this saved search
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            Dict with the number processed and a result per alert
        """
        now = now or utcnow()
        alerts = self.db.get_active_alerts(saved_search_id)
        logger.info(f"Found {len(alerts)} active alerts to check")

        results = []
        for alert in alerts:
            try:
                results.append(self.evaluate_search_alert(alert, now))
            except Exception as e:
                logger.error(f"Error checking alert {alert.id}: {e}")
                results.append({"alert_id": alert.id, "error": str(e)})

        return {"processed": len(results), "results": results}

    def evaluate_search_alert(self, alert: SearchAlert, now: datetime) -> dict:
        """Evaluate one saved-search alert."""
        skip = tier_reason(self.db.get_user(alert.user_id))
        skip = skip or throttle_reason(alert.last_sent_at, alert.frequency, now)
        if skip is None and alert.filters_error:
            logger.warning(f"Alert {alert.id} has invalid filters: {alert.filters_error}")
            skip = "Invalid filters"
        if skip is None and alert.saved_search is None:
            skip = "Saved search not found"
        if skip:
            logger.info(f"Skipping alert {alert.id}: {skip}")
            return {"alert_id": alert.id, "skipped": True, "reason": skip}

        since = alert.last_sent_at or now - timedelta(days=self.config.search_alert_lookback_days)
        filters = alert.saved_search.filters
        candidates = self.db.find_candidate_contracts(since, now)
        matches = [c for c in candidates if filters.matches(c)]
        matches = matches[:self.config.search_alert_candidate_limit]

        if not matches:
            return {"alert_id": alert.id, "matches": 0}

        if not self.db.claim_alert_send(alert.id, alert.last_sent_at, now, len(matches)):
            logger.info(f"Alert {alert.id} was already claimed by another run")
            return {"alert_id": alert.id, "skipped": True, "reason": "Already claimed"}

        self.events.send(ALERTS_SEND, {
            "alertId": alert.id,
            "userId": alert.user_id,
            "matches": [c.id for c in matches],
        })
        logger.info(f"Alert {alert.id}: {len(matches)} matches queued for sending")
        return {"alert_id": alert.id, "matches": len(matches)}

    # =========================================================================
    # PROFILE ALERTS
    # =========================================================================

    def check_profile_alerts(self, now: Optional[datetime] = None) -> dict:
        """
        Evaluate every profile that has alerts enabled.

        Returns:
            Dict with the number processed and a result per profile
        """
        now = now or utcnow()
        profiles = self.db.get_alert_enabled_profiles()
        logger.info(f"Found {len(profiles)} profiles with alerts enabled")

        results = []
        for profile in profiles:
            try:
                results.append(self.evaluate_profile(profile, now))
            except Exception as e:
                logger.error(f"Error checking profile {profile.id}: {e}")
                results.append({"profile_id": profile.id, "error": str(e)})

        return {"processed": len(results), "results": results}

    def evaluate_profile(self, profile: CompanyProfile, now: datetime) -> dict:
        """Score recent contracts for one profile and queue an email if any qualify."""
        skip = tier_reason(self.db.get_user(profile.user_id))
        skip = skip or throttle_reason(profile.last_alert_sent_at, profile.alert_frequency, now)
        if skip:
            logger.info(f"Skipping profile {profile.id}: {skip}")
            return {"profile_id": profile.id, "skipped": True, "reason": skip}

        since = profile.last_alert_sent_at or now - timedelta(days=self.config.profile_alert_lookback_days)
        candidates = self.db.find_candidate_contracts(
            since, now, limit=self.config.profile_alert_candidate_limit
        )
        matches = self.matcher.score_and_sort(candidates, profile, profile.min_match_score)

        if not matches:
            return {"profile_id": profile.id, "matches": 0}

        if not self.db.claim_profile_alert_send(profile.id, profile.last_alert_sent_at, now, len(matches)):
            logger.info(f"Profile {profile.id} alert was already claimed by another run")
            return {"profile_id": profile.id, "skipped": True, "reason": "Already claimed"}

        top = matches[:self.config.profile_alert_max_contracts]
        self.events.send(PROFILE_ALERTS_SEND, {
            "profileId": profile.id,
            "userId": profile.user_id,
            "matches": [m.contract.id for m in top],
        })
        logger.info(f"Profile {profile.id}: {len(matches)} matches, top {len(top)} queued for sending")
        return {"profile_id": profile.id, "matches": len(matches)}
