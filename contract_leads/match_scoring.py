"""
Match scoring module for Contract Leads.

Scores a contract against a company profile on four additive dimensions:

    NAICS match              0-40
    Set-aside/certification  0-30
    Location fit             0-15
    Contract size fit        0-15

The total is the plain sum (0-100). Each dimension that produces a real
match adds one human-readable reason; neutral fallback points (the contract
or profile simply doesn't say) add points but no reason. Reasons are listed
in dimension order. Scoring is a pure function of its inputs.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .models import (
    CERTIFICATION_TYPES,
    SMALL_BUSINESS_SET_ASIDES,
    CompanyProfile,
    ContractLead,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MATCH RESULT
# =============================================================================

@dataclass
class DimensionScore:
    """Points for one scoring dimension; ``reason`` is None for fallback points."""
    points: int
    reason: Optional[str] = None


@dataclass
class MatchResult:
    """
    Result of scoring a contract against a profile.

    Recomputed on every evaluation; never stored.
    """
    contract: ContractLead
    match_score: int
    match_reasons: list[str] = field(default_factory=list)

    # Individual scores for debugging
    naics_score: int = 0
    certification_score: int = 0
    location_score: int = 0
    size_score: int = 0


def _round_half_up(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def format_currency(value: float) -> str:
    """Compact dollar amount: $1.5M, $500K, $750. Halves round up ($2,500 is $3K)."""
    amount = Decimal(str(value))
    if amount >= 1_000_000:
        return f"${_round_half_up(amount / 1_000_000, '0.1')}M"
    if amount >= 1_000:
        return f"${_round_half_up(amount / 1_000, '1')}K"
    return f"${_round_half_up(amount, '1')}"


# =============================================================================
# CONTRACT MATCHER
# =============================================================================

class ContractMatcher:
    """
    Scores contracts against a company profile.

    Usage:
        matcher = ContractMatcher()
        results = matcher.score_and_sort(contracts, profile, min_score=50)
    """

    MAX_POINTS = {
        "naics": 40,
        "certification": 30,
        "location": 15,
        "size": 15,
    }

    NAICS_UNKNOWN_POINTS = 20
    OPEN_COMPETITION_POINTS = 15
    SMALL_BUSINESS_POINTS = 15
    LOCATION_UNKNOWN_POINTS = 8
    REMOTE_POINTS = 10
    SIZE_UNKNOWN_POINTS = 8
    SIZE_NEAR_POINTS = 8

    REMOTE_MARKERS = ("REMOTE", "ANYWHERE", "NATIONWIDE")

    def score(self, contract: ContractLead, profile: CompanyProfile) -> MatchResult:
        """
        Score one contract against one profile.

        Args:
            contract: The contract to evaluate
            profile: The subscriber's company profile

        Returns:
            MatchResult with total score and ordered reasons
        """
        naics = self._score_naics(contract, profile)
        certification = self._score_certification(contract, profile)
        location = self._score_location(contract, profile)
        size = self._score_size(contract, profile)

        dimensions = (naics, certification, location, size)
        return MatchResult(
            contract=contract,
            match_score=sum(d.points for d in dimensions),
            match_reasons=[d.reason for d in dimensions if d.reason],
            naics_score=naics.points,
            certification_score=certification.points,
            location_score=location.points,
            size_score=size.points,
        )

    def score_and_sort(
        self,
        contracts: list[ContractLead],
        profile: CompanyProfile,
        min_score: int = 0,
    ) -> list[MatchResult]:
        """
        Score contracts, keep those at or above ``min_score``, best first.

        Ties keep their input order.
        """
        results = [self.score(contract, profile) for contract in contracts]
        kept = [r for r in results if r.match_score >= min_score]
        kept.sort(key=lambda r: r.match_score, reverse=True)
        logger.debug(f"{len(kept)}/{len(contracts)} contracts scored >= {min_score} for profile {profile.id}")
        return kept

    # =========================================================================
    # SCORING COMPONENTS
    # =========================================================================

    def _score_naics(self, contract: ContractLead, profile: CompanyProfile) -> DimensionScore:
        """Industry code overlap; a code prefix matches in either direction (541 ~ 541330)."""
        if not contract.naics_codes:
            return DimensionScore(self.NAICS_UNKNOWN_POINTS)
        if not profile.naics_codes:
            return DimensionScore(0)

        for code in contract.naics_codes:
            for profile_code in profile.naics_codes:
                if code.startswith(profile_code) or profile_code.startswith(code):
                    return DimensionScore(self.MAX_POINTS["naics"], f"NAICS match ({code})")
        return DimensionScore(0)

    def _score_certification(self, contract: ContractLead, profile: CompanyProfile) -> DimensionScore:
        """Eligibility for the contract's set-aside."""
        set_aside = contract.set_aside_type
        if not set_aside:
            # Full and open competition
            return DimensionScore(self.OPEN_COMPETITION_POINTS)

        for cert_code in profile.certifications:
            cert = CERTIFICATION_TYPES.get(cert_code)
            if cert and set_aside in cert.set_aside_codes:
                return DimensionScore(
                    self.MAX_POINTS["certification"],
                    f"Set-aside eligible ({cert.label})",
                )

        if set_aside in SMALL_BUSINESS_SET_ASIDES:
            return DimensionScore(self.SMALL_BUSINESS_POINTS, "Small business set-aside")
        return DimensionScore(0)

    def _score_location(self, contract: ContractLead, profile: CompanyProfile) -> DimensionScore:
        """Preferred state appears in the place of performance."""
        if not contract.place_of_performance or not profile.preferred_states:
            return DimensionScore(self.LOCATION_UNKNOWN_POINTS)

        location = contract.place_of_performance.upper()
        for state in profile.preferred_states:
            if state.upper() in location:
                return DimensionScore(self.MAX_POINTS["location"], f"Location match ({state})")

        if any(marker in location for marker in self.REMOTE_MARKERS):
            return DimensionScore(self.REMOTE_POINTS, "Remote/nationwide eligible")
        return DimensionScore(0)

    def _score_size(self, contract: ContractLead, profile: CompanyProfile) -> DimensionScore:
        """Contract value inside the preferred range, with partial credit when close."""
        value = contract.contract_value
        if not value:
            return DimensionScore(self.SIZE_UNKNOWN_POINTS)

        low, high = profile.min_contract_value, profile.max_contract_value
        if low is None and high is None:
            return DimensionScore(self.SIZE_UNKNOWN_POINTS)

        above_min = low is None or value >= low
        below_max = high is None or value <= high
        if above_min and below_max:
            return DimensionScore(self.MAX_POINTS["size"], f"Size fit ({format_currency(value)})")

        # Within half of the range boundary
        if low is not None and value < low and low > 0 and value / low > 0.5:
            return DimensionScore(self.SIZE_NEAR_POINTS)
        if high is not None and value > high and high / value > 0.5:
            return DimensionScore(self.SIZE_NEAR_POINTS)
        return DimensionScore(0)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def calculate_match_score(contract: ContractLead, profile: CompanyProfile) -> MatchResult:
    """Score one contract against one profile."""
    return ContractMatcher().score(contract, profile)


def score_and_sort_contracts(
    contracts: list[ContractLead],
    profile: CompanyProfile,
    min_score: int = 0,
) -> list[MatchResult]:
    """
    Score and rank contracts for a profile.

    Args:
        contracts: Candidate contracts
        profile: Company profile to score against
        min_score: Drop results below this score

    Returns:
        MatchResults sorted by score, highest first
    """
    return ContractMatcher().score_and_sort(contracts, profile, min_score)
