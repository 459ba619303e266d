"""Core data models for the escrow ledger."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


GUESS_MIN = 0
GUESS_MAX = 255


class Phase(IntEnum):
    """Lifecycle phases; the value only ever increases."""

    AWAITING_COMMITMENT = 0
    ACCEPTING_STAKES = 1
    REVEALED = 2
    SETTLED = 3


class PayoutOutcome(str, Enum):
    SENT = "sent"
    DEFERRED = "deferred"
    IN_FLIGHT = "in_flight"


@dataclass
class Payout:
    """One winner's settlement result."""

    participant: str
    stake: int
    share: int
    outcome: PayoutOutcome
    tx_hash: Optional[str] = None


@dataclass
class InFlightTransfer:
    """Broadcast transfer whose receipt never arrived; awaits reconciliation."""

    recipient: str
    amount: int
    tx_hash: str
    purpose: str


@dataclass
class LedgerEvent:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    event_time: float = field(default_factory=time.time)

    def get_item_id(self) -> str:
        return f"{self.event_time:.6f}-{self.event_type}"


@dataclass
class LedgerState:
    """Inspectable snapshot of everything the ledger persists."""

    initialized: bool
    administrator: Optional[str]
    phase: Phase
    commitment: Optional[str]
    commitment_set: bool
    revealed: bool
    revealed_value: Optional[int]
    balance: int
    stakes: Dict[int, Dict[str, int]]
    participants: Dict[int, List[str]]
    totals: Dict[int, int]
    pending_withdrawals: Dict[str, int]
    in_flight: List[InFlightTransfer] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.name
        # JSON object keys are strings
        data["stakes"] = {str(k): v for k, v in self.stakes.items()}
        data["participants"] = {str(k): v for k, v in self.participants.items()}
        data["totals"] = {str(k): v for k, v in self.totals.items()}
        return data


class Pot:
    """Integer balance held by the ledger."""

    def __init__(self, balance: int = 0) -> None:
        self._balance = balance

    @property
    def balance(self) -> int:
        return self._balance

    def credit(self, amount: int) -> None:
        self._balance += amount

    def debit(self, amount: int) -> None:
        if amount > self._balance:
            raise ValueError(f"Cannot debit {amount} from a pot holding {self._balance}")
        self._balance -= amount
