"""Kernel configuration.

The kernel never reads ambient mutable state: limits and thresholds live in a
frozen :class:`KernelConfig` handed to every Gatekeeper and Orchestrator at
construction time.

Environment variables (see :meth:`KernelConfig.from_env`):
- CK_MODE: observe|advise|enforce (default enforce)
- CK_MEMORY_LIMIT_BYTES: hardware viability limit (default 3 GiB)
- CK_EVIDENCE_SCORE_THRESHOLD: minimum weighted evidence score (default 0.7)
- CK_R_ABSOLUTE_THRESHOLD: minimum R_absolute for VP accrual (default 0.5)
- CK_ESCALATION_THRESHOLD: impact score above which humans decide (default 0.8)
- CK_MAX_WORKERS: orchestrator worker pool size (default 4)
- CK_EVALUATION_TIMEOUT_SECONDS: per-evaluation wall clock limit (unset = none)
- CK_AUDIT_LOG_PATH: JSONL audit log file (unset = in-memory only)
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import CK_E_CONFIG, kernel_error


GIB = 1024 ** 3


def _not_int(v: Any) -> bool:
    # bool is an int subclass; True must not pass as 1
    return isinstance(v, bool) or not isinstance(v, int)


class Mode(Enum):
    """How a decision is surfaced to the caller."""
    OBSERVE = "observe"
    ADVISE = "advise"
    ENFORCE = "enforce"

    @classmethod
    def coerce(cls, value: Any) -> "Mode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise kernel_error(CK_E_CONFIG, f"unknown mode {value!r}", allowed=[m.value for m in cls]) from None


@dataclass(frozen=True)
class KernelConfig:
    mode: Mode = Mode.ENFORCE
    memory_limit_bytes: int = 3 * GIB
    evidence_score_threshold: float = 0.7
    r_absolute_threshold: float = 0.5
    escalation_threshold: float = 0.8

    # Energy pricing, in tokens
    gate_cost: int = 1
    evidence_item_cost: int = 1

    # Orchestration
    max_workers: int = 4
    evaluation_timeout_seconds: Optional[float] = None

    audit_log_path: Optional[str] = None

    def __post_init__(self):
        # Accept plain strings for mode so dict/env loading stays simple.
        object.__setattr__(self, "mode", Mode.coerce(self.mode))
        errs = self.validate()
        if errs:
            raise kernel_error(CK_E_CONFIG, "invalid kernel configuration: " + "; ".join(errs), errors=errs)

    def validate(self) -> List[str]:
        errors: List[str] = []
        if _not_int(self.memory_limit_bytes) or self.memory_limit_bytes <= 0:
            errors.append("memory_limit_bytes must be a positive integer")
        for name in ("evidence_score_threshold", "r_absolute_threshold", "escalation_threshold"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                errors.append(f"{name} must be a finite number")
        for name in ("gate_cost", "evidence_item_cost"):
            v = getattr(self, name)
            if _not_int(v) or v < 0:
                errors.append(f"{name} must be a non-negative integer")
        if _not_int(self.max_workers) or self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.evaluation_timeout_seconds is not None:
            t = self.evaluation_timeout_seconds
            if isinstance(t, bool) or not isinstance(t, (int, float)) or not math.isfinite(t) or t <= 0:
                errors.append("evaluation_timeout_seconds must be positive when set")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["mode"] = self.mode.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KernelConfig":
        """Build a config from a plain mapping (e.g. a parsed JSON/YAML document)."""
        if not isinstance(data, dict):
            raise kernel_error(CK_E_CONFIG, "configuration must be a mapping")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise kernel_error(CK_E_CONFIG, f"unknown configuration keys: {unknown}", unknown=unknown)
        return cls(**data)

    @classmethod
    def from_env(cls) -> "KernelConfig":
        def _get_int(name: str, default: int) -> int:
            raw = os.getenv(name, "").strip()
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError:
                raise kernel_error(CK_E_CONFIG, f"{name} must be an integer, got {raw!r}") from None

        def _get_float(name: str, default: Optional[float]) -> Optional[float]:
            raw = os.getenv(name, "").strip()
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError:
                raise kernel_error(CK_E_CONFIG, f"{name} must be a number, got {raw!r}") from None

        return cls(
            mode=os.getenv("CK_MODE", "").strip() or cls.mode,
            memory_limit_bytes=_get_int("CK_MEMORY_LIMIT_BYTES", cls.memory_limit_bytes),
            evidence_score_threshold=_get_float("CK_EVIDENCE_SCORE_THRESHOLD", cls.evidence_score_threshold),
            r_absolute_threshold=_get_float("CK_R_ABSOLUTE_THRESHOLD", cls.r_absolute_threshold),
            escalation_threshold=_get_float("CK_ESCALATION_THRESHOLD", cls.escalation_threshold),
            max_workers=_get_int("CK_MAX_WORKERS", cls.max_workers),
            evaluation_timeout_seconds=_get_float("CK_EVALUATION_TIMEOUT_SECONDS", None),
            audit_log_path=os.getenv("CK_AUDIT_LOG_PATH", "").strip() or None,
        )
