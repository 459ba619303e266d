"""
Settlement Engine - pro-rata payout of the pot to winners of the revealed guess
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from guess_escrow.ledger.errors import TransferInFlight
from guess_escrow.ledger.models import Payout, PayoutOutcome, Pot
from guess_escrow.ledger.stakes import StakeLedger
from guess_escrow.ledger.transfers import ValueTransfer
from guess_escrow.ledger.withdrawals import PendingWithdrawalLedger
from guess_escrow.utils.common import shorten_eth_address
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

Notifier = Callable[[str, str, Dict[str, Any]], None]


@dataclass
class SettlementReport:
    """Auditable record of one settlement pass."""

    revealed_value: int
    pool: int
    winning_total: int
    payouts: List[Payout] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def distributed(self) -> int:
        return sum(p.share for p in self.payouts)

    @property
    def sent(self) -> int:
        return sum(p.share for p in self.payouts if p.outcome == PayoutOutcome.SENT)

    @property
    def deferred(self) -> int:
        return sum(p.share for p in self.payouts if p.outcome == PayoutOutcome.DEFERRED)

    @property
    def in_flight(self) -> int:
        return sum(p.share for p in self.payouts if p.outcome == PayoutOutcome.IN_FLIGHT)

    @property
    def dust(self) -> int:
        return self.pool - self.distributed if self.winning_total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revealed_value": self.revealed_value,
            "pool": self.pool,
            "winning_total": self.winning_total,
            "payouts": [
                {**asdict(p), "outcome": p.outcome.value}
                for p in self.payouts
            ],
            "skipped": list(self.skipped),
            "distributed": self.distributed,
            "sent": self.sent,
            "deferred": self.deferred,
            "in_flight": self.in_flight,
            "dust": self.dust,
        }


def compute_share(pool: int, stake: int, total: int) -> int:
    """floor(pool * stake / total) in exact integer arithmetic."""
    if total <= 0:
        return 0
    return pool * stake // total


class SettlementEngine:
    """Pays each winner ``floor(pool * stake / total)`` once.

    Stake records are zeroed and the pot debited before each transfer. A
    failed transfer puts the pot back and credits the share to the pending
    withdrawal ledger. A transfer that was broadcast but never confirmed stays
    debited and is reported as in flight. The pass always continues with the
    next winner.
    """

    def __init__(
        self,
        stakes: StakeLedger,
        pending: PendingWithdrawalLedger,
        pot: Pot,
        transfer: ValueTransfer,
        notify: Optional[Notifier] = None,
    ) -> None:
        self._stakes = stakes
        self._pending = pending
        self._pot = pot
        self._transfer = transfer
        self._notify = notify or (lambda event_type, message, details: None)

    def settle(self, revealed_value: int) -> SettlementReport:
        pool = self._pot.balance
        total = self._stakes.total_for(revealed_value)
        report = SettlementReport(revealed_value=revealed_value, pool=pool, winning_total=total)

        if pool == 0:
            logger.info("Settlement of guess %s: empty pool, nothing to distribute", revealed_value)
            return report
        if total == 0:
            logger.info("Settlement of guess %s: no winners, pool of %s left for recovery", revealed_value, pool)
            return report

        for participant in self._stakes.participants_of(revealed_value):
            stake = self._stakes.stake_of(revealed_value, participant)
            if stake == 0:
                report.skipped.append(participant)
                continue

            share = compute_share(pool, stake, total)
            if share == 0:
                # Dust: left in the pot for recover_unclaimed
                logger.info("Share for %s rounds to zero (stake %s of %s)",
                            shorten_eth_address(participant), stake, total)
                report.skipped.append(participant)
                continue

            self._stakes.clear_stake(revealed_value, participant)
            self._pot.debit(share)

            tx_hash = None
            try:
                delivered = self._transfer.send(participant, share)
            except TransferInFlight as exc:
                # Value may still arrive; crediting pending too could pay twice
                outcome = PayoutOutcome.IN_FLIGHT
                tx_hash = exc.tx_hash
                logger.warning("Payout of %s to %s is in flight as %s",
                               share, shorten_eth_address(participant), tx_hash)
                self._notify("payout_in_flight", f"Payout of {share} to {shorten_eth_address(participant)} unconfirmed",
                             {"participant": participant, "amount": share, "stake": stake, "tx_hash": tx_hash})
            else:
                outcome = self._account(participant, stake, share, delivered)

            report.payouts.append(Payout(participant=participant, stake=stake, share=share,
                                         outcome=outcome, tx_hash=tx_hash))

        logger.info(
            "Settlement of guess %s complete: pool=%s distributed=%s sent=%s deferred=%s in_flight=%s dust=%s",
            revealed_value, pool, report.distributed, report.sent, report.deferred, report.in_flight, report.dust,
        )
        return report

    def _account(self, participant: str, stake: int, share: int, delivered: bool) -> PayoutOutcome:
        if delivered:
            self._notify("payout_sent", f"Paid {share} to {shorten_eth_address(participant)}",
                         {"participant": participant, "amount": share, "stake": stake})
            return PayoutOutcome.SENT

        self._pot.credit(share)
        self._pending.credit(participant, share)
        logger.warning("Payout of %s to %s deferred to pending withdrawals",
                       share, shorten_eth_address(participant))
        self._notify("payout_deferred", f"Deferred {share} for {shorten_eth_address(participant)}",
                     {"participant": participant, "amount": share, "stake": stake})
        return PayoutOutcome.DEFERRED
