"""Scoped energy (token) accounting for a single evaluation run.

Usage::

    with EnergyBudget.open(proposal.energy_budget_tokens) as budget:
        budget.charge(1, gate_id=1)
        ...
    budget.total_spent

Charging is monotonic: there are no refunds, and a charge that would exceed
the cap is rejected whole with ``BudgetExceeded``. Closing is guaranteed by
the context manager on every exit path.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .errors import CK_E_BUDGET_CLOSED, BudgetExceeded, kernel_error


class EnergyBudget:
    """Mutable token counter owned by exactly one evaluation."""

    def __init__(self, max_tokens: int):
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
            raise ValueError(f"max_tokens must be a positive integer (got {max_tokens!r})")
        self.max_tokens = max_tokens
        self._spent = 0
        self._closed = False
        self.total_spent: Optional[int] = None
        self.charges_by_gate: Dict[Any, int] = {}

    @classmethod
    def open(cls, max_tokens: int) -> "EnergyBudget":
        return cls(max_tokens)

    @property
    def spent(self) -> int:
        return self._spent

    @property
    def remaining(self) -> int:
        return self.max_tokens - self._spent

    @property
    def closed(self) -> bool:
        return self._closed

    def charge(self, amount: int, gate_id: Any = None) -> int:
        """Spend ``amount`` tokens and return what is left."""
        if self._closed:
            raise kernel_error(CK_E_BUDGET_CLOSED, "cannot charge a closed energy budget")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"charge amount must be a non-negative integer (got {amount!r})")
        if self._spent + amount > self.max_tokens:
            raise BudgetExceeded(amount, self._spent, self.max_tokens, gate_id)
        self._spent += amount
        if gate_id is not None:
            self.charges_by_gate[gate_id] = self.charges_by_gate.get(gate_id, 0) + amount
        return self.remaining

    def close(self) -> int:
        if not self._closed:
            self._closed = True
            self.total_spent = self._spent
        return self.total_spent

    def __enter__(self) -> "EnergyBudget":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"EnergyBudget({self._spent}/{self.max_tokens}, {state})"
