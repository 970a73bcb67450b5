"""Constitutional Kernel package.

A policy-enforcement core that decides whether proposed actions by
autonomous entities may proceed:

- Six ordered constitutional gates (solvency, variety, hardware, evidence,
  viability power, human escalation)
- Per-evaluation energy budgets
- Tamper-evident, hash-chained audit logging of every decision
- Concurrent batch evaluation with dependency ordering

Convenience imports
------------------
The package avoids import-time side effects. The main entry points are
available at the top level and are loaded lazily:

    from constitutional_kernel import Gatekeeper, Orchestrator, Proposal, KernelConfig
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments.

    The project version is a simple `version = "..."` field in
    `pyproject.toml`, so a regex parse is enough.
    """

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
        m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
        return m.group(1) if m else None
    except OSError:
        return None


__version__ = _read_version_from_pyproject() or "0.4.0"

__all__ = [
    "__version__",
    "AuditLog",
    "AuditRecord",
    "CancellationToken",
    "ConstraintViolation",
    "Decision",
    "DependencyCycle",
    "EnergyBudget",
    "EvidenceAggregator",
    "EvidenceItem",
    "GatePipeline",
    "Gatekeeper",
    "InvalidProposal",
    "KernelConfig",
    "Mode",
    "Orchestrator",
    "Overall",
    "Phase",
    "Proposal",
    "VSMFunction",
    "parse_proposal",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "AuditLog": ("constitutional_kernel.audit_log", "AuditLog"),
    "AuditRecord": ("constitutional_kernel.audit_log", "AuditRecord"),
    "CancellationToken": ("constitutional_kernel.pipeline", "CancellationToken"),
    "ConstraintViolation": ("constitutional_kernel.errors", "ConstraintViolation"),
    "Decision": ("constitutional_kernel.gatekeeper", "Decision"),
    "DependencyCycle": ("constitutional_kernel.errors", "DependencyCycle"),
    "EnergyBudget": ("constitutional_kernel.energy", "EnergyBudget"),
    "EvidenceAggregator": ("constitutional_kernel.evidence", "EvidenceAggregator"),
    "EvidenceItem": ("constitutional_kernel.proposal", "EvidenceItem"),
    "GatePipeline": ("constitutional_kernel.pipeline", "GatePipeline"),
    "Gatekeeper": ("constitutional_kernel.gatekeeper", "Gatekeeper"),
    "InvalidProposal": ("constitutional_kernel.errors", "InvalidProposal"),
    "KernelConfig": ("constitutional_kernel.config", "KernelConfig"),
    "Mode": ("constitutional_kernel.config", "Mode"),
    "Orchestrator": ("constitutional_kernel.orchestrator", "Orchestrator"),
    "Overall": ("constitutional_kernel.gatekeeper", "Overall"),
    "Phase": ("constitutional_kernel.proposal", "Phase"),
    "Proposal": ("constitutional_kernel.proposal", "Proposal"),
    "VSMFunction": ("constitutional_kernel.proposal", "VSMFunction"),
    "parse_proposal": ("constitutional_kernel.proposal", "parse_proposal"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        # Cache the resolved attribute on the module for faster future access.
        globals()[name] = value
        return value
    raise AttributeError(f"module 'constitutional_kernel' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
