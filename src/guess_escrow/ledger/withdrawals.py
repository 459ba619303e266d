"""
Pending-Withdrawal Ledger - amounts owed after a failed settlement transfer
"""

from __future__ import annotations

from typing import Dict

from guess_escrow.ledger.errors import NothingToWithdraw


class PendingWithdrawalLedger:
    """participant -> amount owed, credited by settlement and drained by pull."""

    def __init__(self) -> None:
        self._owed: Dict[str, int] = {}

    def credit(self, participant: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError("Pending credit must be positive")
        self._owed[participant] = self._owed.get(participant, 0) + amount
        return self._owed[participant]

    def balance_of(self, participant: str) -> int:
        return self._owed.get(participant, 0)

    def total_owed(self) -> int:
        return sum(self._owed.values())

    def take(self, participant: str) -> int:
        """Zero the participant's balance and return what it held.

        Raises NothingToWithdraw when the balance is already zero.
        """
        amount = self._owed.get(participant, 0)
        if amount == 0:
            raise NothingToWithdraw("No pending withdrawal for caller", participant=participant)
        self._owed[participant] = 0
        return amount

    def restore(self, participant: str, amount: int) -> None:
        """Put back an amount taken by ``take`` after its transfer failed."""
        self._owed[participant] = self._owed.get(participant, 0) + amount

    def snapshot(self) -> Dict[str, int]:
        return {participant: amount for participant, amount in self._owed.items() if amount}
