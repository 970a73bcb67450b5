import math

import pytest

from constitutional_kernel.audit_log import AuditLog
from constitutional_kernel.config import GIB, KernelConfig, Mode
from constitutional_kernel.errors import CK_E_CONSTRAINT_VIOLATION, ConstraintViolation, InvalidProposal
from constitutional_kernel.gatekeeper import Gatekeeper, Overall
from constitutional_kernel.pipeline import CancellationToken
from constitutional_kernel.proposal import proposal_hash


def test_approve_scenario(gatekeeper, make_proposal):
    p = make_proposal()
    d = gatekeeper.check_proposal(p)

    assert d.overall is Overall.APPROVE
    assert d.gates_passed == 6
    assert d.gates_failed == ()
    assert d.energy_consumed == 7
    assert d.mode is Mode.ENFORCE
    assert d.proposal_hash == proposal_hash(p)
    assert not d.requires_signoff
    assert gatekeeper.may_proceed(d)

    rec = gatekeeper.last_record
    assert rec.sequence_number == 1
    assert rec.proposal_hash == d.proposal_hash
    assert rec.decision()["decision_id"] == d.decision_id


def test_insolvent_proposal_raises_in_enforce(gatekeeper, make_proposal):
    with pytest.raises(ConstraintViolation) as exc:
        gatekeeper.check_proposal(make_proposal(E_industrial=-50.0))

    assert exc.value.code == CK_E_CONSTRAINT_VIOLATION
    d = exc.value.decision
    assert d.overall is Overall.REJECT
    assert d.gates_failed == (1,)
    # rejected decisions are audited too
    assert len(gatekeeper.audit_log) == 1
    assert gatekeeper.audit_log.range_query()[0].decision()["overall"] == "REJECT"


@pytest.mark.parametrize("mode", ["observe", "advise", Mode.OBSERVE])
def test_reject_is_returned_outside_enforce(gatekeeper, make_proposal, mode):
    d = gatekeeper.check_proposal(make_proposal(E_industrial=-50.0), mode=mode)
    assert d.overall is Overall.REJECT
    assert not gatekeeper.may_proceed(d)


def test_memory_violation_short_circuits_in_enforce(gatekeeper, make_proposal):
    with pytest.raises(ConstraintViolation) as exc:
        gatekeeper.check_proposal(make_proposal(estimated_memory_bytes=4 * GIB))
    d = exc.value.decision
    assert len(d.gate_results) == 3
    assert d.gates_failed == (3,)
    assert d.note.startswith("partial evaluation: 3/6")


def test_memory_violation_runs_every_gate_in_observe(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal(estimated_memory_bytes=4 * GIB), mode=Mode.OBSERVE)
    assert len(d.gate_results) == 6
    assert d.gates_failed == (3,)
    assert d.overall is Overall.REJECT


def test_small_budget_ends_at_evidence_gate(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal(energy_budget_tokens=3), mode=Mode.ADVISE)
    assert d.overall is Overall.REJECT
    assert d.gates_failed == (4,)
    assert d.gate_results[-1].message.startswith("energy budget exhausted")
    assert d.energy_consumed == 3


def test_invalid_proposal_is_never_audited(gatekeeper, make_proposal):
    with pytest.raises(InvalidProposal):
        gatekeeper.check_proposal(make_proposal(R_absolute=math.nan))
    assert len(gatekeeper.audit_log) == 0


def test_escalation_beats_failure_in_enforce(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal(alternative_models=(), impact_score=0.95))
    assert d.overall is Overall.ESCALATE_HUMAN
    assert d.gates_failed == (2,)
    assert d.requires_signoff


def test_escalation_sign_off_flow(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal(impact_score=0.9))
    assert d.overall is Overall.ESCALATE_HUMAN
    assert gatekeeper.pending_escalations() == (d,)
    assert not gatekeeper.may_proceed(d)
    with pytest.raises(ConstraintViolation):
        gatekeeper.require_clearance(d)

    with pytest.raises(ValueError):
        gatekeeper.acknowledge_escalation(d, "  ", approved=True)

    ack = gatekeeper.acknowledge_escalation(d, "reviewer-7", approved=True, note="reviewed impact model")
    assert ack.reviewer_id == "reviewer-7"
    assert gatekeeper.acknowledgment_for(d) == ack
    assert gatekeeper.pending_escalations() == ()
    assert gatekeeper.may_proceed(d)
    gatekeeper.require_clearance(d)

    with pytest.raises(ValueError):
        gatekeeper.acknowledge_escalation(d, "reviewer-8", approved=False)


def test_denied_escalation_blocks(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal(impact_score=0.9))
    gatekeeper.acknowledge_escalation(d, "reviewer-7", approved=False)
    assert not gatekeeper.may_proceed(d)


def test_only_escalations_from_this_gatekeeper_can_be_acknowledged(make_proposal):
    first = Gatekeeper(KernelConfig(), AuditLog())
    other = Gatekeeper(KernelConfig(), AuditLog())
    approved = first.check_proposal(make_proposal())
    escalated = first.check_proposal(make_proposal(impact_score=0.9))

    with pytest.raises(ValueError):
        first.acknowledge_escalation(approved, "reviewer-7", approved=True)
    with pytest.raises(ValueError):
        other.acknowledge_escalation(escalated, "reviewer-7", approved=True)


def test_vp_delta_only_granted_on_approval(gatekeeper, make_proposal):
    granted = gatekeeper.check_proposal(make_proposal(claims_vp_accrual=True, vp_delta_requested=1.5))
    assert granted.vp_delta == 1.5

    escalated = gatekeeper.check_proposal(
        make_proposal(claims_vp_accrual=True, vp_delta_requested=1.5, impact_score=0.9)
    )
    assert escalated.vp_delta == 0.0

    zeroed = gatekeeper.check_proposal(make_proposal(R_absolute=0.2))
    assert zeroed.overall is Overall.APPROVE
    assert zeroed.vp_delta == 0.0


def test_unjustified_vp_claim_is_rejected(gatekeeper, make_proposal):
    with pytest.raises(ConstraintViolation) as exc:
        gatekeeper.check_proposal(make_proposal(R_absolute=0.2, claims_vp_accrual=True, vp_delta_requested=1.0))
    assert exc.value.decision.gates_failed == (5,)


def test_evaluation_is_deterministic_apart_from_identity(gatekeeper, make_proposal):
    p = make_proposal(evidence_items=(), impact_score=0.5)
    first = gatekeeper.check_proposal(p, mode=Mode.ADVISE)
    second = gatekeeper.check_proposal(p, mode=Mode.ADVISE)

    assert first.gate_results == second.gate_results
    assert first.overall is second.overall
    assert first.decision_id != second.decision_id
    seqs = [r.sequence_number for r in gatekeeper.audit_log.range_query()]
    assert seqs == [1, 2]


def test_pre_cancelled_token_yields_escalation(gatekeeper, make_proposal):
    token = CancellationToken()
    token.cancel("caller gave up")
    d = gatekeeper.check_proposal(make_proposal(), cancel_token=token)
    assert d.overall is Overall.ESCALATE_HUMAN
    assert d.cancelled
    assert d.note == "cancelled: caller gave up"
    assert d.energy_consumed == 0
    assert len(gatekeeper.audit_log) == 1


def test_decision_summary_is_json_ready(gatekeeper, make_proposal):
    d = gatekeeper.check_proposal(make_proposal())
    summary = d.summary()
    assert summary["overall"] == "APPROVE"
    assert [g["gate_id"] for g in summary["gate_results"]] == [1, 2, 3, 4, 5, 6]
    assert d.to_dict()["proposal_hash"] == d.proposal_hash


def test_audit_log_path_from_config(tmp_path, make_proposal):
    path = tmp_path / "kernel-audit.jsonl"
    gk = Gatekeeper(KernelConfig(audit_log_path=str(path)))
    gk.check_proposal(make_proposal())
    assert AuditLog.verify_file(str(path)).checked == 1
