"""
Gatekeeper: evaluates one proposal end to end.

    validate -> open energy budget -> run gate pipeline -> aggregate
             -> append audit record -> surface per mode

Aggregation:
    any gate Escalate -> ESCALATE_HUMAN
    else any gate Fail -> REJECT
    else               -> APPROVE

Modes:
    observe  always returns the Decision
    advise   always returns the Decision; caller branches on ``overall``
    enforce  REJECT raises ConstraintViolation (carrying the Decision);
             ESCALATE_HUMAN returns normally but requires sign-off

Escalation is a terminal decision state. Nothing in here waits on a human:
an external reviewer calls :meth:`Gatekeeper.acknowledge_escalation` and
dependent side effects consult :meth:`Gatekeeper.may_proceed`.
"""

from __future__ import annotations

import datetime
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .audit_log import AuditLog, AuditRecord
from .config import KernelConfig, Mode
from .energy import EnergyBudget
from .errors import ConstraintViolation
from .gates import EvaluationContext, GateOutcome, GateResult, vp_delta_for
from .metrics import record_cancellation, record_decision, record_gate
from .pipeline import CancellationToken, GatePipeline
from .proposal import Proposal, proposal_hash


logger = logging.getLogger("constitutional_kernel")


class Overall(Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ESCALATE_HUMAN = "ESCALATE_HUMAN"


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def aggregate(results: Tuple[GateResult, ...]) -> Overall:
    if any(r.outcome is GateOutcome.ESCALATE for r in results):
        return Overall.ESCALATE_HUMAN
    if any(r.outcome is GateOutcome.FAIL for r in results):
        return Overall.REJECT
    return Overall.APPROVE


@dataclass(frozen=True)
class Decision:
    decision_id: str
    proposal_id: str
    proposal_hash: str
    mode: Mode
    overall: Overall
    gates_passed: int
    gates_failed: Tuple[int, ...]
    energy_consumed: int
    timestamp: str
    gate_results: Tuple[GateResult, ...] = ()
    vp_delta: float = 0.0
    requires_signoff: bool = False
    cancelled: bool = False
    note: str = ""

    def summary(self) -> Dict[str, Any]:
        """Canonical form hashed into the audit chain."""
        return {
            "decision_id": self.decision_id,
            "proposal_id": self.proposal_id,
            "mode": self.mode.value,
            "overall": self.overall.value,
            "gates_passed": self.gates_passed,
            "gates_failed": list(self.gates_failed),
            "energy_consumed": self.energy_consumed,
            "timestamp": self.timestamp,
            "gate_results": [r.to_dict() for r in self.gate_results],
            "vp_delta": self.vp_delta,
            "requires_signoff": self.requires_signoff,
            "cancelled": self.cancelled,
            "note": self.note,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.summary()
        d["proposal_hash"] = self.proposal_hash
        return d


@dataclass(frozen=True)
class EscalationAck:
    """External acknowledgment of an ESCALATE_HUMAN decision."""
    decision_id: str
    reviewer_id: str
    approved: bool
    note: str = ""
    acknowledged_at: str = field(default_factory=_now_iso)


class Gatekeeper:
    """Thread-safe: each call owns its own budget; only the audit log is shared."""

    def __init__(
        self,
        config: Optional[KernelConfig] = None,
        audit_log: Optional[AuditLog] = None,
        pipeline: Optional[GatePipeline] = None,
    ):
        self.config = config or KernelConfig()
        self.audit_log = audit_log if audit_log is not None else AuditLog(self.config.audit_log_path)
        self.pipeline = pipeline or GatePipeline()
        self._acks: Dict[str, EscalationAck] = {}
        self._escalations: Dict[str, Decision] = {}
        self._ack_lock = threading.Lock()
        self.last_record: Optional[AuditRecord] = None

    def check_proposal(
        self,
        proposal: Proposal,
        mode: Optional[Mode] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Decision:
        """Evaluate ``proposal`` and return its Decision.

        Raises InvalidProposal before any gate runs if the proposal is
        malformed, and ConstraintViolation in enforce mode on REJECT.
        """
        proposal.require_valid()
        mode = Mode.coerce(mode) if mode is not None else self.config.mode
        p_hash = proposal_hash(proposal)
        context = EvaluationContext.build(self.config, mode)

        started = time.monotonic()
        with EnergyBudget.open(proposal.energy_budget_tokens) as budget:
            results = self.pipeline.run(proposal, context, budget, cancel_token)
        decision = self._build_decision(proposal, p_hash, mode, results, budget, cancel_token)
        elapsed = time.monotonic() - started

        record = self.audit_log.append(p_hash, decision)
        self.last_record = record
        if decision.overall is Overall.ESCALATE_HUMAN:
            with self._ack_lock:
                self._escalations[decision.decision_id] = decision

        for r in results:
            record_gate(r.gate_id, r.outcome.value)
        record_decision(decision.overall.value, mode.value, decision.energy_consumed, elapsed)
        if decision.cancelled:
            record_cancellation(cancel_token.reason or "cancelled")

        logger.info(
            "decision %s for %s: %s (mode=%s, passed=%d, failed=%s, energy=%d, seq=%d)",
            decision.decision_id,
            proposal.proposal_id,
            decision.overall.value,
            mode.value,
            decision.gates_passed,
            list(decision.gates_failed),
            decision.energy_consumed,
            record.sequence_number,
        )

        if mode is Mode.ENFORCE and decision.overall is Overall.REJECT:
            raise ConstraintViolation(decision)
        return decision

    def _build_decision(
        self,
        proposal: Proposal,
        p_hash: str,
        mode: Mode,
        results: Tuple[GateResult, ...],
        budget: EnergyBudget,
        cancel_token: Optional[CancellationToken],
    ) -> Decision:
        overall = aggregate(results)
        cancelled = cancel_token is not None and cancel_token.observed
        failed = tuple(r.gate_id for r in results if r.outcome is GateOutcome.FAIL)
        passed = sum(1 for r in results if r.outcome is GateOutcome.PASS)

        notes = []
        if cancelled:
            notes.append(f"cancelled: {cancel_token.reason}")
        if len(results) < len(self.pipeline.gates) and not cancelled:
            notes.append(f"partial evaluation: {len(results)}/{len(self.pipeline.gates)} gates evaluated")

        vp_delta = vp_delta_for(proposal, self.config) if overall is Overall.APPROVE else 0.0

        return Decision(
            decision_id=uuid.uuid4().hex,
            proposal_id=proposal.proposal_id,
            proposal_hash=p_hash,
            mode=mode,
            overall=overall,
            gates_passed=passed,
            gates_failed=failed,
            energy_consumed=budget.total_spent or 0,
            timestamp=_now_iso(),
            gate_results=results,
            vp_delta=vp_delta,
            requires_signoff=overall is Overall.ESCALATE_HUMAN,
            cancelled=cancelled,
            note="; ".join(notes),
        )

    # ---------------------------
    # Escalation sign-off
    # ---------------------------

    def acknowledge_escalation(
        self,
        decision: Decision,
        reviewer_id: str,
        approved: bool,
        note: str = "",
    ) -> EscalationAck:
        """Record an external reviewer's verdict on an ESCALATE_HUMAN decision."""
        if decision.overall is not Overall.ESCALATE_HUMAN:
            raise ValueError(f"decision {decision.decision_id} is {decision.overall.value}, not ESCALATE_HUMAN")
        if not reviewer_id or not str(reviewer_id).strip():
            raise ValueError("reviewer_id is required")
        with self._ack_lock:
            if decision.decision_id not in self._escalations:
                raise ValueError(f"decision {decision.decision_id} was not issued by this gatekeeper")
            if decision.decision_id in self._acks:
                raise ValueError(f"decision {decision.decision_id} already acknowledged")
            ack = EscalationAck(decision.decision_id, str(reviewer_id), bool(approved), note)
            self._acks[decision.decision_id] = ack
        logger.info(
            "escalation %s acknowledged by %s: %s",
            decision.decision_id,
            reviewer_id,
            "approved" if approved else "denied",
        )
        return ack

    def acknowledgment_for(self, decision: Decision) -> Optional[EscalationAck]:
        with self._ack_lock:
            return self._acks.get(decision.decision_id)

    def pending_escalations(self) -> Tuple[Decision, ...]:
        with self._ack_lock:
            return tuple(d for did, d in self._escalations.items() if did not in self._acks)

    def may_proceed(self, decision: Decision) -> bool:
        """Whether side effects tied to the decision's proposal may happen now."""
        if decision.overall is Overall.APPROVE:
            return True
        if decision.overall is Overall.REJECT:
            return False
        ack = self.acknowledgment_for(decision)
        return bool(ack is not None and ack.approved)

    def require_clearance(self, decision: Decision) -> None:
        if not self.may_proceed(decision):
            if decision.overall is Overall.ESCALATE_HUMAN:
                raise ConstraintViolation(
                    decision, f"proposal {decision.proposal_id} awaits human sign-off (decision {decision.decision_id})"
                )
            raise ConstraintViolation(decision)
