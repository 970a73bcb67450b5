"""
Proposal data model (the "thermodynamic contract").

A Proposal is built by an external loader from a structured document and is
immutable afterwards. The engine only accepts proposals that pass
:meth:`Proposal.validate`; anything else fails with ``InvalidProposal``
before a single gate runs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .crypto import canonical_hash
from .errors import InvalidProposal


class Phase(Enum):
    """Growth stage of the entity population."""
    GENESIS = "Genesis"
    ADOLESCENT = "Adolescent"
    MATURE = "Mature"
    SYSTEMIC = "Systemic"

    @property
    def required_tier(self) -> int:
        """Weakest evidence tier that still satisfies this phase (lower = stronger)."""
        return _PHASE_REQUIRED_TIER[self]

    @classmethod
    def from_entity_count(cls, entity_count: int) -> "Phase":
        if entity_count < 0:
            raise ValueError("entity_count must be non-negative")
        for upper, phase in _PHASE_BOUNDARIES:
            if entity_count < upper:
                return phase
        return cls.SYSTEMIC


_PHASE_REQUIRED_TIER = {
    Phase.GENESIS: 4,
    Phase.ADOLESCENT: 3,
    Phase.MATURE: 2,
    Phase.SYSTEMIC: 1,
}

# (exclusive upper bound on entity count, phase)
_PHASE_BOUNDARIES = (
    (10, Phase.GENESIS),
    (100, Phase.ADOLESCENT),
    (1000, Phase.MATURE),
)


class VSMFunction(Enum):
    """Viable System Model function tag, used to classify audit records."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"


@dataclass(frozen=True)
class EvidenceItem:
    tier: int
    weight_override: Optional[float] = None

    def validate(self) -> List[str]:
        errors = []
        if isinstance(self.tier, bool) or not isinstance(self.tier, int) or self.tier not in (1, 2, 3, 4):
            errors.append(f"tier must be one of 1,2,3,4 (got {self.tier!r})")
        if self.weight_override is not None:
            w = self.weight_override
            if isinstance(w, bool) or not isinstance(w, (int, float)) or not math.isfinite(w):
                errors.append("weight_override must be a finite number")
            elif not (0.0 <= w <= 1.0):
                errors.append(f"weight_override must be in [0,1] (got {w})")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {"tier": self.tier, "weight_override": self.weight_override}


def _is_number(v: Any) -> bool:
    return not isinstance(v, bool) and isinstance(v, (int, float)) and math.isfinite(v)


@dataclass(frozen=True)
class Proposal:
    proposal_id: str

    # Energy terms
    E_industrial: float
    E_ecosystem: float
    E_interaction: float
    E_invested: float
    E_production: float

    estimated_memory_bytes: int
    evidence_items: Tuple[EvidenceItem, ...]
    R_absolute: float
    entity_trust_score: float
    energy_budget_tokens: int
    vsm_function: VSMFunction
    phase_context: Phase

    alternative_models: Tuple[str, ...] = ()
    claims_vp_accrual: bool = False
    vp_delta_requested: float = 0.0
    impact_score: float = 0.0
    depends_on: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        # Freeze sequences handed in as lists.
        for name in ("evidence_items", "alternative_models", "depends_on"):
            value = getattr(self, name)
            if isinstance(value, list):
                object.__setattr__(self, name, tuple(value))

    @property
    def E_net(self) -> float:
        return self.E_industrial + self.E_ecosystem + self.E_interaction

    def validate(self) -> List[str]:
        """Return every schema problem; an empty list means the proposal is admissible."""
        errors: List[str] = []

        if not isinstance(self.proposal_id, str) or not self.proposal_id.strip():
            errors.append("proposal_id must be a non-empty string")

        for name in ("E_industrial", "E_ecosystem", "E_interaction", "E_invested", "E_production", "R_absolute"):
            if not _is_number(getattr(self, name)):
                errors.append(f"{name} must be a finite number")

        mem = self.estimated_memory_bytes
        if isinstance(mem, bool) or not isinstance(mem, int) or mem < 0:
            errors.append("estimated_memory_bytes must be a non-negative integer")

        if not isinstance(self.evidence_items, tuple):
            errors.append("evidence_items must be a sequence")
        else:
            for i, item in enumerate(self.evidence_items):
                if not isinstance(item, EvidenceItem):
                    errors.append(f"evidence_items[{i}] must be an EvidenceItem")
                    continue
                errors.extend(f"evidence_items[{i}]: {e}" for e in item.validate())

        for name in ("entity_trust_score", "impact_score"):
            v = getattr(self, name)
            if not _is_number(v) or not (0.0 <= v <= 1.0):
                errors.append(f"{name} must be in [0,1]")

        tokens = self.energy_budget_tokens
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            errors.append("energy_budget_tokens must be a positive integer")

        if not isinstance(self.vsm_function, VSMFunction):
            errors.append("vsm_function must be a VSMFunction")
        if not isinstance(self.phase_context, Phase):
            errors.append("phase_context must be a Phase")

        if not isinstance(self.alternative_models, tuple) or not all(
            isinstance(m, str) for m in self.alternative_models
        ):
            errors.append("alternative_models must be a sequence of strings")

        if not isinstance(self.claims_vp_accrual, bool):
            errors.append("claims_vp_accrual must be a boolean")
        if not _is_number(self.vp_delta_requested) or self.vp_delta_requested < 0:
            errors.append("vp_delta_requested must be a non-negative number")

        if not isinstance(self.depends_on, tuple) or not all(isinstance(d, str) for d in self.depends_on):
            errors.append("depends_on must be a sequence of proposal ids")
        elif self.proposal_id in self.depends_on:
            errors.append("proposal cannot depend on itself")

        return errors

    def require_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise InvalidProposal(f"proposal {self.proposal_id!r} is malformed", errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "E_industrial": self.E_industrial,
            "E_ecosystem": self.E_ecosystem,
            "E_interaction": self.E_interaction,
            "E_invested": self.E_invested,
            "E_production": self.E_production,
            "estimated_memory_bytes": self.estimated_memory_bytes,
            "evidence_items": [item.to_dict() for item in self.evidence_items],
            "R_absolute": self.R_absolute,
            "entity_trust_score": self.entity_trust_score,
            "energy_budget_tokens": self.energy_budget_tokens,
            "vsm_function": self.vsm_function.value,
            "phase_context": self.phase_context.value,
            "alternative_models": list(self.alternative_models),
            "claims_vp_accrual": self.claims_vp_accrual,
            "vp_delta_requested": self.vp_delta_requested,
            "impact_score": self.impact_score,
            "depends_on": list(self.depends_on),
        }


def proposal_hash(proposal: Proposal) -> str:
    """SHA-256 of the proposal's canonical JSON form."""
    return canonical_hash(proposal.to_dict())


_REQUIRED_FIELDS = (
    "proposal_id",
    "E_industrial",
    "E_ecosystem",
    "E_interaction",
    "E_invested",
    "E_production",
    "estimated_memory_bytes",
    "evidence_items",
    "R_absolute",
    "entity_trust_score",
    "energy_budget_tokens",
    "vsm_function",
    "phase_context",
)


def _parse_phase(data: Dict[str, Any]) -> Phase:
    raw = data["phase_context"]
    if isinstance(raw, int) and not isinstance(raw, bool):
        return Phase.from_entity_count(raw)
    for phase in Phase:
        if str(raw).strip().lower() in (phase.value.lower(), phase.name.lower()):
            return phase
    raise ValueError(f"unknown phase_context {raw!r}")


def _parse_evidence(raw: Any) -> Tuple[EvidenceItem, ...]:
    if not isinstance(raw, (list, tuple)):
        raise ValueError("evidence_items must be a list")
    items = []
    for entry in raw:
        if isinstance(entry, dict):
            items.append(EvidenceItem(tier=entry["tier"], weight_override=entry.get("weight_override")))
        elif isinstance(entry, (list, tuple)) and 1 <= len(entry) <= 2:
            items.append(EvidenceItem(tier=entry[0], weight_override=entry[1] if len(entry) == 2 else None))
        else:
            raise ValueError(f"cannot parse evidence item {entry!r}")
    return tuple(items)


def _parse_str_list(data: Dict[str, Any], name: str) -> Tuple[str, ...]:
    raw = data.get(name)
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)) or not all(isinstance(v, str) for v in raw):
        raise ValueError(f"{name} must be a list of strings")
    return tuple(raw)


def parse_proposal(data: Dict[str, Any]) -> Proposal:
    """
    Build a validated Proposal from a structured document.

    ``phase_context`` may be a phase name or an entity count.
    Raises InvalidProposal on any missing or malformed field.
    """
    if not isinstance(data, dict):
        raise InvalidProposal("proposal document must be a JSON object")

    missing = [f for f in _REQUIRED_FIELDS if f not in data]
    if missing:
        raise InvalidProposal(f"proposal document is missing fields: {missing}", [f"missing field: {m}" for m in missing])

    try:
        proposal = Proposal(
            proposal_id=data["proposal_id"],
            E_industrial=data["E_industrial"],
            E_ecosystem=data["E_ecosystem"],
            E_interaction=data["E_interaction"],
            E_invested=data["E_invested"],
            E_production=data["E_production"],
            estimated_memory_bytes=data["estimated_memory_bytes"],
            evidence_items=_parse_evidence(data["evidence_items"]),
            R_absolute=data["R_absolute"],
            entity_trust_score=data["entity_trust_score"],
            energy_budget_tokens=data["energy_budget_tokens"],
            vsm_function=VSMFunction(str(data["vsm_function"]).strip().upper()),
            phase_context=_parse_phase(data),
            alternative_models=_parse_str_list(data, "alternative_models"),
            claims_vp_accrual=data.get("claims_vp_accrual", False),
            vp_delta_requested=data.get("vp_delta_requested", 0.0),
            impact_score=data.get("impact_score", 0.0),
            depends_on=_parse_str_list(data, "depends_on"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidProposal(f"cannot parse proposal document: {e}", [str(e)]) from e

    proposal.require_valid()
    return proposal
