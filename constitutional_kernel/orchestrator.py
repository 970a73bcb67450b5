"""Batch coordination of many proposals.

Independent proposals are evaluated concurrently on a bounded thread pool.
Proposals that declare ``depends_on`` are evaluated only after everything
they depend on, by splitting the batch into topological waves; a cycle fails
the whole batch with ``DependencyCycle`` before anything is evaluated.

A per-evaluation wall-clock timeout cancels the evaluation cooperatively at
the next gate boundary; the resulting ESCALATE_HUMAN decision is still
audited.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .config import KernelConfig, Mode
from .errors import ConstraintViolation, DependencyCycle, InvalidProposal
from .gatekeeper import Decision, Gatekeeper, Overall
from .pipeline import CancellationToken
from .proposal import Proposal


logger = logging.getLogger("constitutional_kernel.orchestrator")


def dependency_waves(proposals: Sequence[Proposal]) -> List[List[Proposal]]:
    """Group proposals into waves; every dependency sits in an earlier wave.

    Within a wave, input order is preserved.
    """
    by_id: Dict[str, Proposal] = {}
    for p in proposals:
        if p.proposal_id in by_id:
            raise InvalidProposal(f"duplicate proposal_id {p.proposal_id!r} in batch")
        by_id[p.proposal_id] = p

    unknown = sorted({d for p in proposals for d in p.depends_on if d not in by_id})
    if unknown:
        raise InvalidProposal(f"unknown dependencies: {unknown}", [f"unknown dependency: {d}" for d in unknown])

    pending: Dict[str, Set[str]] = {p.proposal_id: set(p.depends_on) for p in proposals}
    waves: List[List[Proposal]] = []
    done: Set[str] = set()
    while pending:
        ready = [p for p in proposals if p.proposal_id in pending and pending[p.proposal_id] <= done]
        if not ready:
            raise DependencyCycle(pending.keys())
        waves.append(ready)
        for p in ready:
            done.add(p.proposal_id)
            del pending[p.proposal_id]
    return waves


@dataclass
class OrchestratorStats:
    evaluated: int = 0
    approved: int = 0
    rejected: int = 0
    escalated: int = 0
    cancelled: int = 0
    total_energy: int = 0
    gate_failures: Dict[int, int] = field(default_factory=dict)

    @property
    def mean_energy(self) -> float:
        return self.total_energy / self.evaluated if self.evaluated else 0.0

    @property
    def approval_rate(self) -> float:
        return self.approved / self.evaluated if self.evaluated else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "evaluated": self.evaluated,
            "approved": self.approved,
            "rejected": self.rejected,
            "escalated": self.escalated,
            "cancelled": self.cancelled,
            "total_energy": self.total_energy,
            "mean_energy": self.mean_energy,
            "approval_rate": self.approval_rate,
            "gate_failures": dict(self.gate_failures),
        }


class Orchestrator:
    def __init__(self, config: Optional[KernelConfig] = None, gatekeeper: Optional[Gatekeeper] = None):
        if config is None:
            config = gatekeeper.config if gatekeeper is not None else KernelConfig()
        self.config = config
        self.gatekeeper = gatekeeper or Gatekeeper(config)
        self._stats = OrchestratorStats()
        self._lock = threading.Lock()
        self._active: Set[CancellationToken] = set()

    def coordinate(self, proposals: Iterable[Proposal], mode: Optional[Mode] = None) -> List[Decision]:
        """Evaluate a batch and return one Decision per proposal, in input order.

        Enforce-mode rejections do not abort the batch: the rejected Decision
        is returned in its slot.
        """
        batch = list(proposals)
        for p in batch:
            p.require_valid()
        waves = dependency_waves(batch)
        logger.info("coordinating %d proposals in %d wave(s)", len(batch), len(waves))

        decisions: Dict[str, Decision] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="ck-eval") as pool:
            for wave in waves:
                futures = {pool.submit(self._evaluate, p, mode): p.proposal_id for p in wave}
                for fut in as_completed(futures):
                    decisions[futures[fut]] = fut.result()
        return [decisions[p.proposal_id] for p in batch]

    def _evaluate(self, proposal: Proposal, mode: Optional[Mode]) -> Decision:
        token = CancellationToken()
        timer = None
        timeout = self.config.evaluation_timeout_seconds
        if timeout:
            timer = threading.Timer(timeout, token.cancel, args=(f"timeout after {timeout}s",))
            timer.daemon = True

        with self._lock:
            self._active.add(token)
        try:
            if timer is not None:
                timer.start()
            try:
                decision = self.gatekeeper.check_proposal(proposal, mode, token)
            except ConstraintViolation as e:
                decision = e.decision
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._active.discard(token)

        self._record(decision)
        return decision

    def cancel_all(self, reason: str = "orchestrator shutdown") -> int:
        """Cancel every in-flight evaluation at its next gate boundary."""
        with self._lock:
            tokens = list(self._active)
        for token in tokens:
            token.cancel(reason)
        return len(tokens)

    def _record(self, decision: Decision) -> None:
        with self._lock:
            s = self._stats
            s.evaluated += 1
            s.total_energy += decision.energy_consumed
            if decision.overall is Overall.APPROVE:
                s.approved += 1
            elif decision.overall is Overall.REJECT:
                s.rejected += 1
            else:
                s.escalated += 1
            if decision.cancelled:
                s.cancelled += 1
            for gate_id in decision.gates_failed:
                s.gate_failures[gate_id] = s.gate_failures.get(gate_id, 0) + 1

    def stats(self) -> OrchestratorStats:
        """Snapshot of system-wide aggregates since construction."""
        with self._lock:
            s = self._stats
            return OrchestratorStats(
                evaluated=s.evaluated,
                approved=s.approved,
                rejected=s.rejected,
                escalated=s.escalated,
                cancelled=s.cancelled,
                total_energy=s.total_energy,
                gate_failures=dict(s.gate_failures),
            )
