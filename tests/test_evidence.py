import pytest

from constitutional_kernel.energy import EnergyBudget
from constitutional_kernel.errors import BudgetExceeded
from constitutional_kernel.evidence import EvidenceAggregator
from constitutional_kernel.proposal import EvidenceItem, Phase


def test_empty_evidence_scores_zero_and_misses_tier():
    score = EvidenceAggregator().score((), Phase.GENESIS)
    assert score.weighted_score == 0.0
    assert score.min_tier_met is False
    assert not score.sufficient(0.7)


def test_mean_of_tier_defaults():
    items = [EvidenceItem(1), EvidenceItem(4)]
    score = EvidenceAggregator().score(items, Phase.GENESIS)
    assert score.weighted_score == pytest.approx(0.65)
    assert score.min_tier_met


def test_weight_override_replaces_tier_default():
    items = [EvidenceItem(4, weight_override=0.9), EvidenceItem(3)]
    score = EvidenceAggregator().score(items, Phase.GENESIS)
    assert score.weighted_score == pytest.approx(0.7)


@pytest.mark.parametrize(
    "phase,tier,met",
    [
        (Phase.GENESIS, 4, True),
        (Phase.ADOLESCENT, 4, False),
        (Phase.ADOLESCENT, 3, True),
        (Phase.MATURE, 3, False),
        (Phase.MATURE, 2, True),
        (Phase.SYSTEMIC, 2, False),
        (Phase.SYSTEMIC, 1, True),
    ],
)
def test_phase_minimum_tier(phase, tier, met):
    score = EvidenceAggregator().score([EvidenceItem(tier)], phase)
    assert score.min_tier_met is met


def test_threshold_comparison_tolerates_float_error():
    # three tier-2 items average to 0.7 give or take a rounding error
    score = EvidenceAggregator().score([EvidenceItem(2)] * 3, Phase.MATURE)
    assert score.sufficient(0.7)


def test_charges_budget_per_item():
    budget = EnergyBudget.open(10)
    EvidenceAggregator(item_cost=2).score([EvidenceItem(1)] * 3, Phase.GENESIS, budget, gate_id=4)
    assert budget.spent == 6
    assert budget.charges_by_gate == {4: 6}


def test_budget_exhaustion_propagates():
    budget = EnergyBudget.open(2)
    with pytest.raises(BudgetExceeded):
        EvidenceAggregator().score([EvidenceItem(1)] * 3, Phase.GENESIS, budget)
    assert budget.spent == 0
