import pytest

from constitutional_kernel.config import GIB, KernelConfig, Mode
from constitutional_kernel.errors import CK_E_CONFIG, KernelError


_ENV_VARS = (
    "CK_MODE",
    "CK_MEMORY_LIMIT_BYTES",
    "CK_EVIDENCE_SCORE_THRESHOLD",
    "CK_R_ABSOLUTE_THRESHOLD",
    "CK_ESCALATION_THRESHOLD",
    "CK_MAX_WORKERS",
    "CK_EVALUATION_TIMEOUT_SECONDS",
    "CK_AUDIT_LOG_PATH",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    cfg = KernelConfig()
    assert cfg.mode is Mode.ENFORCE
    assert cfg.memory_limit_bytes == 3 * GIB
    assert cfg.evidence_score_threshold == 0.7
    assert cfg.r_absolute_threshold == 0.5
    assert cfg.escalation_threshold == 0.8
    assert cfg.evaluation_timeout_seconds is None


def test_from_env_defaults_match_constructor(clean_env):
    assert KernelConfig.from_env() == KernelConfig()


def test_from_env_reads_overrides(clean_env):
    clean_env.setenv("CK_MODE", "Observe")
    clean_env.setenv("CK_MEMORY_LIMIT_BYTES", str(2 * GIB))
    clean_env.setenv("CK_EVIDENCE_SCORE_THRESHOLD", "0.5")
    clean_env.setenv("CK_MAX_WORKERS", "8")
    clean_env.setenv("CK_EVALUATION_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("CK_AUDIT_LOG_PATH", "/tmp/ck-audit.jsonl")

    cfg = KernelConfig.from_env()
    assert cfg.mode is Mode.OBSERVE
    assert cfg.memory_limit_bytes == 2 * GIB
    assert cfg.evidence_score_threshold == 0.5
    assert cfg.max_workers == 8
    assert cfg.evaluation_timeout_seconds == 2.5
    assert cfg.audit_log_path == "/tmp/ck-audit.jsonl"


@pytest.mark.parametrize(
    "name,value",
    [
        ("CK_MODE", "audit-only"),
        ("CK_MEMORY_LIMIT_BYTES", "lots"),
        ("CK_MEMORY_LIMIT_BYTES", "0"),
        ("CK_MAX_WORKERS", "0"),
        ("CK_R_ABSOLUTE_THRESHOLD", "half"),
        ("CK_EVALUATION_TIMEOUT_SECONDS", "-1"),
    ],
)
def test_from_env_rejects_bad_values(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(KernelError) as exc:
        KernelConfig.from_env()
    assert exc.value.code == CK_E_CONFIG


def test_from_dict_round_trips_and_rejects_unknown_keys():
    cfg = KernelConfig(mode="advise", gate_cost=2)
    assert KernelConfig.from_dict(cfg.to_dict()) == cfg

    with pytest.raises(KernelError) as exc:
        KernelConfig.from_dict({"mode": "enforce", "memory_limt": 1})
    assert exc.value.details["unknown"] == ["memory_limt"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"memory_limit_bytes": True},
        {"max_workers": True},
        {"gate_cost": False},
        {"evidence_score_threshold": True},
        {"evaluation_timeout_seconds": True},
    ],
)
def test_booleans_are_not_accepted_as_numbers(overrides):
    with pytest.raises(KernelError) as exc:
        KernelConfig(**overrides)
    assert exc.value.code == CK_E_CONFIG
