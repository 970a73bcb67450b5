"""
The six constitutional gates.

The gate set is closed: these six variants, in this order, are the whole
constitution-enforcing surface. Each gate is side-effect free apart from
charging the evaluation's energy budget, so every check is a pure function
of (Proposal, EvaluationContext).

    1  Thermodynamic Solvency   E_net > 0 and E_invested < E_production
    2  Cognitive Variety        at least one dissenting/alternative model
    3  Hardware Viability       memory estimate under the hard limit (fatal in enforce)
    4  Evidence Sufficiency     weighted score >= threshold and phase tier met
    5  Viability Power          VP accrual only when R_absolute >= threshold
    6  Human Escalation         impact above threshold forces human judgment
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, Optional, Tuple

from .config import KernelConfig, Mode
from .energy import EnergyBudget
from .evidence import EvidenceAggregator, _float_ge
from .proposal import Proposal


class GateOutcome(Enum):
    PASS = "pass"
    FAIL = "fail"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class GateResult:
    gate_id: int
    gate_name: str
    outcome: GateOutcome
    message: str
    energy_spent: int = 0

    @property
    def passed(self) -> bool:
        return self.outcome is GateOutcome.PASS

    def to_dict(self):
        return {
            "gate_id": self.gate_id,
            "gate_name": self.gate_name,
            "outcome": self.outcome.value,
            "message": self.message,
            "energy_spent": self.energy_spent,
        }


@dataclass(frozen=True)
class EvaluationContext:
    """Everything a gate may read besides the proposal itself."""
    config: KernelConfig
    mode: Mode
    aggregator: EvidenceAggregator
    budget: Optional[EnergyBudget] = None

    @classmethod
    def build(cls, config: KernelConfig, mode: Optional[Mode] = None) -> "EvaluationContext":
        return cls(
            config=config,
            mode=Mode.coerce(mode) if mode is not None else config.mode,
            aggregator=EvidenceAggregator(item_cost=config.evidence_item_cost),
        )

    def with_budget(self, budget: EnergyBudget) -> "EvaluationContext":
        return replace(self, budget=budget)


class Gate(abc.ABC):
    gate_id: ClassVar[int]
    name: ClassVar[str]

    def evaluate(self, proposal: Proposal, context: EvaluationContext) -> GateResult:
        """Charge the base gate cost, run the check and report what it spent.

        ``BudgetExceeded`` propagates; the pipeline turns it into a Fail.
        """
        budget = context.budget
        start = budget.spent if budget is not None else 0
        if budget is not None:
            budget.charge(context.config.gate_cost, gate_id=self.gate_id)
        outcome, message = self.check(proposal, context)
        spent = (budget.spent - start) if budget is not None else 0
        return GateResult(self.gate_id, self.name, outcome, message, spent)

    @abc.abstractmethod
    def check(self, proposal: Proposal, context: EvaluationContext) -> Tuple[GateOutcome, str]:
        ...

    def __repr__(self) -> str:
        return f"<Gate {self.gate_id}: {self.name}>"


class ThermodynamicSolvencyGate(Gate):
    gate_id = 1
    name = "thermodynamic_solvency"

    def check(self, proposal, context):
        e_net = proposal.E_net
        if e_net > 0 and proposal.E_invested < proposal.E_production:
            return GateOutcome.PASS, f"solvent: E_net={e_net:g}"
        return (
            GateOutcome.FAIL,
            f"thermodynamically insolvent: E_net={e_net:g}, "
            f"E_invested={proposal.E_invested:g}, E_production={proposal.E_production:g}",
        )


class CognitiveVarietyGate(Gate):
    gate_id = 2
    name = "cognitive_variety"

    def check(self, proposal, context):
        refs = [m for m in proposal.alternative_models if m.strip()]
        if refs:
            return GateOutcome.PASS, f"{len(refs)} alternative model(s) declared"
        return GateOutcome.FAIL, "no dissenting or alternative model declared"


class HardwareViabilityGate(Gate):
    gate_id = 3
    name = "hardware_viability"
    fatal: ClassVar[bool] = True

    def check(self, proposal, context):
        limit = context.config.memory_limit_bytes
        if proposal.estimated_memory_bytes < limit:
            return GateOutcome.PASS, f"memory {proposal.estimated_memory_bytes} < limit {limit}"
        return (
            GateOutcome.FAIL,
            f"hard resource limit: memory {proposal.estimated_memory_bytes} >= limit {limit}",
        )


class EvidenceSufficiencyGate(Gate):
    gate_id = 4
    name = "evidence_sufficiency"

    def check(self, proposal, context):
        threshold = context.config.evidence_score_threshold
        score = context.aggregator.score(
            proposal.evidence_items, proposal.phase_context, context.budget, gate_id=self.gate_id
        )
        problems = []
        if not _float_ge(score.weighted_score, threshold):
            problems.append(f"weighted score {score.weighted_score:.3f} < {threshold}")
        if not score.min_tier_met:
            problems.append(
                f"no evidence at tier <= {proposal.phase_context.required_tier} "
                f"required in {proposal.phase_context.value} phase"
            )
        if problems:
            return GateOutcome.FAIL, "insufficient evidence: " + "; ".join(problems)
        return GateOutcome.PASS, f"weighted score {score.weighted_score:.3f}, tier requirement met"


def vp_delta_for(proposal: Proposal, config: KernelConfig) -> float:
    """Viability power granted to the proposal (zero below the R threshold)."""
    if not proposal.claims_vp_accrual:
        return 0.0
    if _float_ge(proposal.R_absolute, config.r_absolute_threshold):
        return float(proposal.vp_delta_requested)
    return 0.0


class ViabilityPowerGate(Gate):
    gate_id = 5
    name = "viability_power"

    def check(self, proposal, context):
        threshold = context.config.r_absolute_threshold
        permitted = _float_ge(proposal.R_absolute, threshold)
        if permitted:
            return GateOutcome.PASS, f"VP accrual permitted (R_absolute={proposal.R_absolute:g})"
        if proposal.claims_vp_accrual:
            return (
                GateOutcome.FAIL,
                f"VP accrual claimed with R_absolute={proposal.R_absolute:g} < {threshold}",
            )
        return GateOutcome.PASS, f"VP delta zeroed (R_absolute={proposal.R_absolute:g} < {threshold})"


class HumanEscalationGate(Gate):
    gate_id = 6
    name = "human_escalation"

    def check(self, proposal, context):
        threshold = context.config.escalation_threshold
        if proposal.impact_score > threshold:
            return (
                GateOutcome.ESCALATE,
                f"impact score {proposal.impact_score:g} > {threshold}: human judgment required",
            )
        return GateOutcome.PASS, f"impact score {proposal.impact_score:g} within autonomous range"


CONSTITUTIONAL_GATES: Tuple[Gate, ...] = (
    ThermodynamicSolvencyGate(),
    CognitiveVarietyGate(),
    HardwareViabilityGate(),
    EvidenceSufficiencyGate(),
    ViabilityPowerGate(),
    HumanEscalationGate(),
)
