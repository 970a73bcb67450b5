import pytest

from constitutional_kernel.energy import EnergyBudget
from constitutional_kernel.errors import CK_E_BUDGET_CLOSED, BudgetExceeded, KernelError


def test_charges_accumulate_and_remaining_tracks():
    with EnergyBudget.open(10) as budget:
        assert budget.charge(3, gate_id=1) == 7
        budget.charge(2, gate_id=1)
        budget.charge(4, gate_id=4)
        assert budget.spent == 9
        assert budget.remaining == 1
        assert budget.charges_by_gate == {1: 5, 4: 4}
    assert budget.closed
    assert budget.total_spent == 9


def test_charge_exceeding_cap_is_rejected_whole():
    budget = EnergyBudget.open(5)
    budget.charge(4)
    with pytest.raises(BudgetExceeded) as exc:
        budget.charge(2, gate_id=3)
    assert exc.value.gate_id == 3
    assert exc.value.spent == 4
    assert budget.spent == 4
    # exactly reaching the cap is allowed
    budget.charge(1)
    assert budget.remaining == 0


def test_no_refunds():
    budget = EnergyBudget.open(5)
    with pytest.raises(ValueError):
        budget.charge(-1)


def test_close_runs_on_exception_path():
    budget = None
    with pytest.raises(RuntimeError):
        with EnergyBudget.open(5) as budget:
            budget.charge(2)
            raise RuntimeError("gate blew up")
    assert budget.closed
    assert budget.total_spent == 2


def test_charge_after_close_fails():
    budget = EnergyBudget.open(5)
    assert budget.close() == 0
    assert budget.close() == 0  # idempotent
    with pytest.raises(KernelError) as exc:
        budget.charge(1)
    assert exc.value.code == CK_E_BUDGET_CLOSED


@pytest.mark.parametrize("bad", [0, -3, 1.5, True])
def test_max_tokens_must_be_positive_int(bad):
    with pytest.raises(ValueError):
        EnergyBudget.open(bad)
