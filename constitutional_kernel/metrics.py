"""Prometheus metrics for the constitutional kernel.

Metrics goals:
- low-cardinality labels (gate ids, outcomes, modes; never proposal ids)
- internal observability for decisions, gate outcomes, energy and audit appends

Set CK_METRICS_ENABLED=0 to turn the record_* helpers into no-ops.
"""
from __future__ import annotations

import os

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


DECISIONS_TOTAL = Counter(
    "ck_decisions_total",
    "Total gatekeeper decisions",
    ["overall", "mode"],
)
GATE_OUTCOMES_TOTAL = Counter(
    "ck_gate_outcomes_total",
    "Gate results by gate and outcome",
    ["gate", "outcome"],
)
ENERGY_CONSUMED_TOKENS = Histogram(
    "ck_energy_consumed_tokens",
    "Energy tokens consumed per evaluation",
    buckets=(1, 2, 4, 6, 8, 12, 16, 32, 64, 128, 256),
)
EVALUATION_LATENCY_SECONDS = Histogram(
    "ck_evaluation_latency_seconds",
    "Wall clock time of a single proposal evaluation",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5),
)
CANCELLATIONS_TOTAL = Counter(
    "ck_cancellations_total",
    "Evaluations cancelled between gates",
    ["reason"],
)
AUDIT_RECORDS = Gauge(
    "ck_audit_records",
    "Highest audit sequence number appended in this process",
)


def record_decision(overall: str, mode: str, energy: int, latency_seconds: float) -> None:
    if not _env_bool("CK_METRICS_ENABLED", True):
        return
    DECISIONS_TOTAL.labels(overall=str(overall), mode=str(mode)).inc()
    ENERGY_CONSUMED_TOKENS.observe(float(energy))
    EVALUATION_LATENCY_SECONDS.observe(float(latency_seconds))


def record_gate(gate_id: int, outcome: str) -> None:
    if not _env_bool("CK_METRICS_ENABLED", True):
        return
    GATE_OUTCOMES_TOTAL.labels(gate=str(gate_id), outcome=str(outcome)).inc()


def record_cancellation(reason: str) -> None:
    if not _env_bool("CK_METRICS_ENABLED", True):
        return
    # Collapse free-form reasons to keep label cardinality bounded.
    label = "timeout" if str(reason).startswith("timeout") else "other"
    CANCELLATIONS_TOTAL.labels(reason=label).inc()


def record_audit_append(sequence_number: int) -> None:
    if not _env_bool("CK_METRICS_ENABLED", True):
        return
    AUDIT_RECORDS.set(float(sequence_number))


def render_latest() -> tuple:
    """Return (body, content_type) for a /metrics style exposition."""
    return generate_latest(), CONTENT_TYPE_LATEST
