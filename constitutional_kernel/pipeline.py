"""Ordered gate execution.

Rules applied by :class:`GatePipeline.run`:

- Gates run strictly 1 -> 6 inside one evaluation.
- A Hardware Viability failure is fatal in enforce mode and ends the run.
- Any other Fail is recorded and the run continues, so the Decision reports
  every gate, not only the first failure.
- An exhausted energy budget becomes a Fail for the gate that was charging
  and ends the run.
- Unexpected gate exceptions become a Fail for that gate (fail closed).
- Cancellation is cooperative and only observed between gates; a cancel
  that arrives during the final gate is logged and the decision stands.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence, Tuple

from .config import Mode
from .energy import EnergyBudget
from .errors import BudgetExceeded
from .gates import CONSTITUTIONAL_GATES, EvaluationContext, Gate, GateOutcome, GateResult
from .proposal import Proposal


logger = logging.getLogger("constitutional_kernel.pipeline")


class CancellationToken:
    """Cross-thread cancel flag checked by the pipeline before each gate.

    ``active_gate`` is kept current by the pipeline (None between gates) so a
    cancel can be attributed to the gate that was running when it arrived.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.reason: Optional[str] = None
        self.active_gate: Optional[int] = None
        self.cancelled_during: Optional[int] = None
        # Set by the pipeline once it has stopped because of this token.
        self.observed = False

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self.cancelled_during = self.active_gate
            self._event.set()


class GatePipeline:
    def __init__(self, gates: Sequence[Gate] = CONSTITUTIONAL_GATES):
        self.gates: Tuple[Gate, ...] = tuple(sorted(gates, key=lambda g: g.gate_id))

    def run(
        self,
        proposal: Proposal,
        context: EvaluationContext,
        budget: EnergyBudget,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[GateResult, ...]:
        ctx = context.with_budget(budget)
        results: List[GateResult] = []

        for gate in self.gates:
            if cancel_token is not None:
                if cancel_token.cancelled:
                    cancel_token.observed = True
                    results.append(self._cancelled_result(gate, cancel_token))
                    break
                cancel_token.active_gate = gate.gate_id

            start = budget.spent
            try:
                result = gate.evaluate(proposal, ctx)
            except BudgetExceeded as e:
                logger.info("energy budget exhausted at gate %s for %s: %s", gate.gate_id, proposal.proposal_id, e)
                results.append(
                    GateResult(
                        gate.gate_id,
                        gate.name,
                        GateOutcome.FAIL,
                        f"energy budget exhausted: {e.message}",
                        budget.spent - start,
                    )
                )
                break
            except Exception as e:
                logger.error("gate %s raised for %s (FAIL-CLOSED): %s", gate.gate_id, proposal.proposal_id, e)
                results.append(
                    GateResult(
                        gate.gate_id,
                        gate.name,
                        GateOutcome.FAIL,
                        f"gate error: {type(e).__name__}: {str(e)[:200]}",
                        budget.spent - start,
                    )
                )
                continue
            finally:
                if cancel_token is not None:
                    cancel_token.active_gate = None

            results.append(result)
            if (
                result.outcome is GateOutcome.FAIL
                and getattr(gate, "fatal", False)
                and ctx.mode is Mode.ENFORCE
            ):
                logger.debug("fatal gate %s failed for %s; short-circuiting", gate.gate_id, proposal.proposal_id)
                break

        if cancel_token is not None and not cancel_token.observed and cancel_token.cancelled:
            logger.debug(
                "cancel (%s) for %s arrived during gate %s with no gate left to observe it; decision stands",
                cancel_token.reason,
                proposal.proposal_id,
                cancel_token.cancelled_during,
            )
        return tuple(results)

    def _cancelled_result(self, next_gate: Gate, token: CancellationToken) -> GateResult:
        attributed = token.cancelled_during if token.cancelled_during is not None else next_gate.gate_id
        names = {g.gate_id: g.name for g in self.gates}
        if token.cancelled_during is None:
            where = f"before gate {attributed} started"
        else:
            where = f"while gate {attributed} was active"
        return GateResult(
            attributed,
            names.get(attributed, next_gate.name),
            GateOutcome.ESCALATE,
            f"evaluation cancelled ({token.reason}) {where}; gates from {next_gate.gate_id} onward not evaluated",
            0,
        )
