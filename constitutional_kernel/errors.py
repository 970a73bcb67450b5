"""Stable error taxonomy for the constitutional kernel.

Every error raised by the kernel derives from :class:`KernelError`, which
carries a machine-readable ``code`` plus structured ``details``.

Propagation policy:
- ``InvalidProposal`` is raised before any gate runs.
- ``BudgetExceeded`` never escapes the gate pipeline; it becomes a gate Fail.
- ``ConstraintViolation`` is only raised by enforce mode and carries the Decision.
- ``DependencyCycle`` aborts an orchestrated batch before evaluation.
- ``AuditChainBroken`` is only raised by explicit verification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Input validation
CK_E_INVALID_PROPOSAL = "CK_E_INVALID_PROPOSAL"

# Evaluation
CK_E_BUDGET_EXCEEDED = "CK_E_BUDGET_EXCEEDED"
CK_E_BUDGET_CLOSED = "CK_E_BUDGET_CLOSED"
CK_E_CONSTRAINT_VIOLATION = "CK_E_CONSTRAINT_VIOLATION"

# Orchestration
CK_E_DEPENDENCY_CYCLE = "CK_E_DEPENDENCY_CYCLE"

# Audit
CK_E_AUDIT_CHAIN_BROKEN = "CK_E_AUDIT_CHAIN_BROKEN"

# Canonicalization / configuration
CK_E_CANON_NONFINITE = "CK_E_CANON_NONFINITE"
CK_E_CONFIG = "CK_E_CONFIG"


@dataclass(eq=False)
class KernelError(Exception):
    """Base kernel exception with stable error code."""

    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def kernel_error(code: str, message: str, **details: Any) -> KernelError:
    return KernelError(code=code, message=message, details=details)


class InvalidProposal(KernelError):
    """Malformed proposal, rejected before the pipeline starts."""

    def __init__(self, message: str, errors: Any = None, **details: Any):
        errs = list(errors or [])
        if errs:
            details["errors"] = errs
        super().__init__(CK_E_INVALID_PROPOSAL, message, details)
        self.errors = errs


class BudgetExceeded(KernelError):
    """An energy charge would push spending past the budget cap."""

    def __init__(self, requested: int, spent: int, max_tokens: int, gate_id: Any = None):
        super().__init__(
            CK_E_BUDGET_EXCEEDED,
            f"charge of {requested} exceeds budget ({spent}/{max_tokens} spent)",
            {"requested": requested, "spent": spent, "max_tokens": max_tokens, "gate_id": gate_id},
        )
        self.requested = requested
        self.spent = spent
        self.max_tokens = max_tokens
        self.gate_id = gate_id


class ConstraintViolation(KernelError):
    """Enforce-mode surfacing of a decision that may not proceed."""

    def __init__(self, decision: Any, message: str = ""):
        overall = getattr(getattr(decision, "overall", None), "value", None)
        failed = list(getattr(decision, "gates_failed", ()) or ())
        super().__init__(
            CK_E_CONSTRAINT_VIOLATION,
            message or f"proposal {getattr(decision, 'proposal_id', '?')} rejected (failed gates: {failed})",
            {"overall": overall, "gates_failed": failed},
        )
        self.decision = decision


class DependencyCycle(KernelError):
    """Declared proposal dependencies form a cycle."""

    def __init__(self, members: Any):
        ids = sorted(str(m) for m in members)
        super().__init__(CK_E_DEPENDENCY_CYCLE, f"dependency cycle among proposals: {ids}", {"members": ids})
        self.members = ids


class AuditChainBroken(KernelError):
    """Hash chain verification failed; the log must not be trusted."""

    def __init__(self, broken_at: Any, reason: str):
        super().__init__(
            CK_E_AUDIT_CHAIN_BROKEN,
            f"audit chain broken at sequence {broken_at}: {reason}",
            {"broken_at": broken_at, "reason": reason},
        )
        self.broken_at = broken_at
        self.reason = reason
