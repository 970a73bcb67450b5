import pytest

from constitutional_kernel.audit_log import AuditLog
from constitutional_kernel.config import GIB, KernelConfig
from constitutional_kernel.gatekeeper import Gatekeeper
from constitutional_kernel.proposal import EvidenceItem, Phase, Proposal, VSMFunction


def build_proposal(**overrides) -> Proposal:
    """A proposal that passes all six gates unless overridden."""
    fields = dict(
        proposal_id="P-001",
        E_industrial=100.0,
        E_ecosystem=0.0,
        E_interaction=0.0,
        E_invested=10.0,
        E_production=50.0,
        estimated_memory_bytes=1 * GIB,
        evidence_items=(EvidenceItem(tier=1),),
        R_absolute=0.6,
        entity_trust_score=0.8,
        energy_budget_tokens=100,
        vsm_function=VSMFunction.C,
        phase_context=Phase.GENESIS,
        alternative_models=("dissent-model-v1",),
        impact_score=0.2,
    )
    fields.update(overrides)
    return Proposal(**fields)


@pytest.fixture
def make_proposal():
    return build_proposal


@pytest.fixture
def gatekeeper():
    return Gatekeeper(KernelConfig(), AuditLog())
