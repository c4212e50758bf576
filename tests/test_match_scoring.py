from conftest import make_contract, make_profile

from contract_leads.match_scoring import (
    ContractMatcher,
    calculate_match_score,
    format_currency,
    score_and_sort_contracts,
)


def test_perfect_match_scores_100_with_reasons_in_order():
    result = calculate_match_score(make_contract(), make_profile())

    assert result.match_score == 100
    assert result.match_reasons == [
        "NAICS match (541512)",
        "Set-aside eligible (Woman-Owned Small Business)",
        "Location match (MA)",
        "Size fit ($500K)",
    ]
    assert (result.naics_score, result.certification_score, result.location_score, result.size_score) == (40, 30, 15, 15)


def test_naics_prefix_matches_either_direction():
    matcher = ContractMatcher()
    profile = make_profile(naics_codes=["541"])

    assert matcher.score(make_contract(naics_codes=["541330"]), profile).naics_score == 40
    assert matcher.score(make_contract(naics_codes=["54"]), profile).naics_score == 40
    assert matcher.score(make_contract(naics_codes=["236220"]), profile).naics_score == 0


def test_neutral_fallbacks_add_points_without_reasons():
    contract = make_contract(
        naics_codes=[],
        set_aside_type=None,
        place_of_performance=None,
        estimated_value=None,
    )
    result = calculate_match_score(contract, make_profile())

    assert result.naics_score == 20
    assert result.certification_score == 15
    assert result.location_score == 8
    assert result.size_score == 8
    assert result.match_score == 51
    assert result.match_reasons == []


def test_small_business_set_aside_without_certifications():
    result = calculate_match_score(make_contract(set_aside_type="SBA"), make_profile(certifications=[]))

    assert result.certification_score == 15
    assert "Small business set-aside" in result.match_reasons


def test_ineligible_set_aside_scores_zero():
    result = calculate_match_score(make_contract(set_aside_type="HZC"), make_profile())
    assert result.certification_score == 0


def test_remote_location():
    contract = make_contract(place_of_performance="Remote")
    result = calculate_match_score(contract, make_profile(preferred_states=["TX"]))

    assert result.location_score == 10
    assert "Remote/nationwide eligible" in result.match_reasons


def test_size_near_range_gets_partial_credit():
    matcher = ContractMatcher()
    profile = make_profile(min_contract_value=100000.0, max_contract_value=1000000.0)

    assert matcher.score(make_contract(estimated_value=75000.0), profile).size_score == 8
    assert matcher.score(make_contract(estimated_value=1500000.0), profile).size_score == 8
    assert matcher.score(make_contract(estimated_value=10000.0), profile).size_score == 0
    assert matcher.score(make_contract(estimated_value=5000000.0), profile).size_score == 0


def test_award_amount_used_when_no_estimate():
    contract = make_contract(estimated_value=None, award_amount=250000.0)
    result = calculate_match_score(contract, make_profile())
    assert "Size fit ($250K)" in result.match_reasons


def test_scoring_is_deterministic():
    contract, profile = make_contract(), make_profile()
    first = calculate_match_score(contract, profile)
    second = calculate_match_score(contract, profile)

    assert first.match_score == second.match_score
    assert first.match_reasons == second.match_reasons


def test_score_and_sort_filters_and_orders():
    strong = make_contract(source_id="strong")
    weak = make_contract(source_id="weak", naics_codes=["236220"], set_aside_type="HZC",
                         place_of_performance="Austin, Texas", estimated_value=10.0)
    middle_a = make_contract(source_id="middle-a", naics_codes=["236220"])
    middle_b = make_contract(source_id="middle-b", naics_codes=["236220"])

    results = score_and_sort_contracts([middle_a, weak, strong, middle_b], make_profile(), min_score=50)

    assert [r.contract.source_id for r in results] == ["strong", "middle-a", "middle-b"]
    assert [r.match_score for r in results] == [100, 60, 60]


def test_format_currency():
    assert format_currency(1500000) == "$1.5M"
    assert format_currency(500000) == "$500K"
    assert format_currency(750) == "$750"


def test_format_currency_rounds_halves_up():
    assert format_currency(2500) == "$3K"
    assert format_currency(1250000.0) == "$1.3M"
    assert format_currency(500.5) == "$501"
    assert "Size fit ($3K)" in calculate_match_score(
        make_contract(estimated_value=2500.0),
        make_profile(min_contract_value=1000.0, max_contract_value=5000.0),
    ).match_reasons


def test_naics_four_digit_profile_code():
    matcher = ContractMatcher()
    profile = make_profile(naics_codes=["5415"])

    assert matcher.score(make_contract(naics_codes=["541512"]), profile).naics_score == 40
    assert matcher.score(make_contract(naics_codes=["611000"]), profile).naics_score == 0


def test_open_competition_scores_15_whatever_the_certifications():
    contract = make_contract(set_aside_type=None)
    for certifications in ([], ["WOSB"], ["8A", "HZC", "SDVOSB"]):
        result = calculate_match_score(contract, make_profile(certifications=certifications))
        assert result.certification_score == 15


def test_scores_stay_within_bounds():
    contracts = [
        make_contract(),
        make_contract(naics_codes=[], set_aside_type=None, place_of_performance=None, estimated_value=None),
        make_contract(naics_codes=["111110"], set_aside_type="VSA", place_of_performance="Guam", estimated_value=1.0),
        make_contract(set_aside_type="SBP", place_of_performance="Nationwide", estimated_value=None, award_amount=9e9),
    ]
    profiles = [
        make_profile(),
        make_profile(naics_codes=[], certifications=[], preferred_states=[],
                     min_contract_value=None, max_contract_value=None),
        make_profile(naics_codes=["1"], certifications=["SBA"], min_contract_value=0.0),
    ]
    for contract in contracts:
        for profile in profiles:
            assert 0 <= calculate_match_score(contract, profile).match_score <= 100


def test_min_score_30_results_are_non_increasing():
    contracts = [
        make_contract(naics_codes=["236220"], set_aside_type="HZC", place_of_performance="Austin, Texas",
                      estimated_value=10.0),
        make_contract(naics_codes=["236220"]),
        make_contract(),
        make_contract(set_aside_type=None, estimated_value=None),
    ]
    results = score_and_sort_contracts(contracts, make_profile(), min_score=30)
    scores = [r.match_score for r in results]

    assert all(score >= 30 for score in scores)
    assert scores == sorted(scores, reverse=True)
    assert len(results) == 3
