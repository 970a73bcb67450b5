"""
Evidence weighting.

Scores a proposal's evidence set as the mean of per-item weights and checks
that at least one item is strong enough for the current growth phase.

Tier defaults (lower tier = stronger evidence):

    tier 1 -> 1.0   (e.g. reproduced measurement)
    tier 2 -> 0.7
    tier 3 -> 0.5
    tier 4 -> 0.3   (e.g. anecdote)

An explicit ``weight_override`` replaces the tier default for that item.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .energy import EnergyBudget
from .proposal import EvidenceItem, Phase


DEFAULT_TIER_WEIGHTS: Dict[int, float] = {1: 1.0, 2: 0.7, 3: 0.5, 4: 0.3}

# Epsilon for threshold comparisons; a mean of 0.7 weights may land at 0.6999999999999998.
FLOAT_EPSILON = 1e-9


def _float_ge(a: float, b: float, epsilon: float = FLOAT_EPSILON) -> bool:
    """Safe greater-than-or-equal comparison for floats."""
    return a > b - epsilon


@dataclass(frozen=True)
class EvidenceScore:
    weighted_score: float
    min_tier_met: bool

    def sufficient(self, threshold: float) -> bool:
        return self.min_tier_met and _float_ge(self.weighted_score, threshold)


class EvidenceAggregator:
    def __init__(self, tier_weights: Optional[Dict[int, float]] = None, item_cost: int = 1):
        self.tier_weights = dict(tier_weights or DEFAULT_TIER_WEIGHTS)
        self.item_cost = item_cost

    def effective_weight(self, item: EvidenceItem) -> float:
        if item.weight_override is not None:
            return float(item.weight_override)
        return self.tier_weights[item.tier]

    def score(
        self,
        evidence_items: Sequence[EvidenceItem],
        phase_context: Phase,
        budget: Optional[EnergyBudget] = None,
        gate_id: Optional[int] = None,
    ) -> EvidenceScore:
        """Return (weighted_score, min_tier_met); an empty set scores 0.0 and never meets the tier."""
        items = tuple(evidence_items)
        if budget is not None and items:
            budget.charge(self.item_cost * len(items), gate_id=gate_id)

        if not items:
            return EvidenceScore(weighted_score=0.0, min_tier_met=False)

        weighted = sum(self.effective_weight(i) for i in items) / len(items)
        required = phase_context.required_tier
        min_tier_met = any(i.tier <= required for i in items)
        return EvidenceScore(weighted_score=weighted, min_tier_met=min_tier_met)
