"""
Stake Ledger - per-guess stake records, participant lists and running totals
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List

from guess_escrow.ledger.errors import InvalidAmount, ParticipantLimitReached
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)


class StakeLedger:
    """Records who staked how much on which guess.

    Participant lists are append-only and insertion-ordered. A participant is
    listed once per guess no matter how many times they stake on it. The
    ceiling on distinct participants per guess bounds the cost of settling
    that guess.
    """

    def __init__(self, max_participants_per_value: int = 500) -> None:
        if max_participants_per_value < 1:
            raise ValueError("max_participants_per_value must be at least 1")
        self.max_participants_per_value = max_participants_per_value
        self._stakes: Dict[int, Dict[str, int]] = defaultdict(dict)
        self._participants: Dict[int, List[str]] = defaultdict(list)
        self._totals: Dict[int, int] = defaultdict(int)

    def check_stake(self, value: int, participant: str, amount: int) -> None:
        """Raise if ``add_stake`` would reject this stake; mutates nothing."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("Stake amount must be a positive integer", amount=repr(amount))
        is_new = participant not in self._stakes.get(value, {})
        if is_new and len(self._participants.get(value, ())) >= self.max_participants_per_value:
            raise ParticipantLimitReached(
                f"Guess {value} already has {self.max_participants_per_value} participants",
                value=value,
                limit=self.max_participants_per_value,
            )

    def add_stake(self, value: int, participant: str, amount: int) -> int:
        """Add ``amount`` to the participant's stake on ``value``; returns the new stake."""
        self.check_stake(value, participant, amount)

        records = self._stakes[value]
        if participant not in records:
            self._participants[value].append(participant)
            records[participant] = 0
        records[participant] += amount
        self._totals[value] += amount
        return records[participant]

    def stake_of(self, value: int, participant: str) -> int:
        return self._stakes.get(value, {}).get(participant, 0)

    def total_for(self, value: int) -> int:
        return self._totals.get(value, 0)

    def participants_of(self, value: int) -> List[str]:
        return list(self._participants.get(value, ()))

    def clear_stake(self, value: int, participant: str) -> int:
        """Zero a stake record as it is paid out; returns the amount it held.

        The running total is left as it was at reveal so every winner's share
        is computed against the same denominator.
        """
        records = self._stakes.get(value)
        if not records or participant not in records:
            return 0
        amount = records[participant]
        records[participant] = 0
        return amount

    def snapshot(self):
        stakes = {value: dict(records) for value, records in self._stakes.items() if records}
        participants = {value: list(names) for value, names in self._participants.items() if names}
        totals = {value: total for value, total in self._totals.items() if total}
        return stakes, participants, totals
