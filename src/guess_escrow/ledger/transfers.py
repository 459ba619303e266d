"""
Value transfer primitives.

The ledger only ever calls ``send(recipient, amount) -> bool``. A ``False``
return means the value did not move; the caller decides how to account for it.
Implementations must not raise for ordinary delivery failures. The one
exception is TransferInFlight: the value was handed off but delivery is
unknown, so the caller must neither roll back nor credit it elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Set

from guess_escrow.utils.common import shorten_eth_address
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_GAS_LIMIT = 2300


class ValueTransfer(Protocol):
    def send(self, recipient: str, amount: int) -> bool:
        ...


@dataclass
class TransferRecord:
    recipient: str
    amount: int
    success: bool
    reason: str = ""


ReceiveHook = Callable[[str, int], None]


class InMemoryTransfer:
    """Transfer backend that keeps recipient balances in process memory.

    Recipients may register a receive hook, which runs during ``send`` the way
    a contract's receive function would, and a receive cost compared against
    the gas limit. A hook that raises, a cost above the limit, or a recipient
    marked as rejecting all make the transfer fail.
    """

    def __init__(self, gas_limit: int = DEFAULT_GAS_LIMIT) -> None:
        self.gas_limit = gas_limit
        self.balances: Dict[str, int] = {}
        self.history: List[TransferRecord] = []
        self._hooks: Dict[str, ReceiveHook] = {}
        self._costs: Dict[str, int] = {}
        self._rejecting: Set[str] = set()

    def register_recipient(
        self,
        address: str,
        hook: Optional[ReceiveHook] = None,
        gas_cost: int = 0,
    ) -> None:
        if hook is not None:
            self._hooks[address] = hook
        self._costs[address] = gas_cost

    def reject(self, address: str, rejecting: bool = True) -> None:
        if rejecting:
            self._rejecting.add(address)
        else:
            self._rejecting.discard(address)

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def send(self, recipient: str, amount: int) -> bool:
        reason = ""
        if recipient in self._rejecting:
            reason = "recipient rejected transfer"
        elif self._costs.get(recipient, 0) > self.gas_limit:
            reason = f"receive cost {self._costs[recipient]} exceeds gas limit {self.gas_limit}"
        else:
            hook = self._hooks.get(recipient)
            if hook is not None:
                try:
                    hook(recipient, amount)
                except Exception as exc:
                    reason = f"receive hook raised {type(exc).__name__}: {exc}"

        success = not reason
        if success:
            self.balances[recipient] = self.balances.get(recipient, 0) + amount
            logger.debug("Transferred %s to %s", amount, shorten_eth_address(recipient))
        else:
            logger.warning("Transfer of %s to %s failed: %s", amount, shorten_eth_address(recipient), reason)

        self.history.append(TransferRecord(recipient=recipient, amount=amount, success=success, reason=reason))
        return success
