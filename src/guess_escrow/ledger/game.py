"""
Guessing Game - lifecycle state machine and public entry points of the ledger
"""

from __future__ import annotations

import functools
from threading import RLock
from typing import Any, Dict, List, Optional

from guess_escrow.ledger.audit import ReportSigner
from guess_escrow.ledger.commitment import BytesLike, normalize_commitment, normalize_salt, validate_guess, verify_commitment
from guess_escrow.ledger.errors import (
    AlreadyInitialized,
    AlreadyRevealed,
    CommitmentAlreadySet,
    InvalidAddress,
    NoCommitment,
    NotAdministrator,
    NothingToRecover,
    NotInitialized,
    ReentrantCall,
    TransferFailed,
    TransferInFlight,
    WrongPhase,
)
from guess_escrow.ledger.event_manager import MemoryStore
from guess_escrow.ledger.models import InFlightTransfer, LedgerState, PayoutOutcome, Phase, Pot
from guess_escrow.ledger.settlement import SettlementEngine, SettlementReport
from guess_escrow.ledger.stakes import StakeLedger
from guess_escrow.ledger.transfers import ValueTransfer
from guess_escrow.ledger.withdrawals import PendingWithdrawalLedger
from guess_escrow.utils.common import shorten_eth_address, to_checksum
from guess_escrow.utils.config import get_int
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)


def operation(method):
    """Run a public mutating operation atomically.

    Calls from other threads wait on the lock. A nested call from the same
    thread, i.e. from a transfer recipient while the ledger is mid-operation,
    is rejected with ReentrantCall before it can observe or change anything.
    TransferInFlight is the one error raised after effects were applied, so
    the state is still published before it propagates.
    """

    @functools.wraps(method)
    def wrapper(self: "GuessingGame", *args, **kwargs):
        with self._lock:
            if self._entered:
                raise ReentrantCall(f"{method.__name__} called while another ledger operation is running")
            self._entered = True
            try:
                result = method(self, *args, **kwargs)
            except TransferInFlight:
                self._publish_state()
                raise
            finally:
                self._entered = False
            self._publish_state()
            return result

    return wrapper


class GuessingGame:
    """Single-round commit-reveal betting ledger.

    Phases move strictly forward::

        (uninitialized) -> AWAITING_COMMITMENT -> ACCEPTING_STAKES -> REVEALED -> SETTLED

    Every check runs before the first mutation, so a rejected call leaves no
    trace. Pending-withdrawal balances are owed to participants and are never
    part of what the administrator can recover.
    """

    def __init__(
        self,
        transfer: ValueTransfer,
        *,
        max_participants_per_value: int = 500,
        store: Optional[MemoryStore] = None,
        signer: Optional[ReportSigner] = None,
    ) -> None:
        self._transfer = transfer
        self._store = store or MemoryStore()
        self._signer = signer
        self._lock = RLock()
        self._entered = False

        self._initialized = False
        self._administrator: Optional[str] = None
        self._commitment: Optional[bytes] = None
        self._revealed = False
        self._revealed_value: Optional[int] = None
        self._phase = Phase.AWAITING_COMMITMENT
        self._report: Optional[SettlementReport] = None
        self._in_flight: List[InFlightTransfer] = []

        self._pot = Pot()
        self._stakes = StakeLedger(max_participants_per_value)
        self._pending = PendingWithdrawalLedger()
        self._settlement = SettlementEngine(
            self._stakes, self._pending, self._pot, self._transfer, notify=self._store.publish
        )

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        transfer: ValueTransfer,
        store: Optional[MemoryStore] = None,
        signer: Optional[ReportSigner] = None,
    ) -> "GuessingGame":
        return cls(
            transfer,
            max_participants_per_value=get_int(config, "ledger.max_participants_per_value", 500),
            store=store or MemoryStore(feed_capacity=get_int(config, "ledger.feed_capacity", 100)),
            signer=signer,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitialized("Ledger has not been initialized")

    @staticmethod
    def _identity(caller: str) -> str:
        try:
            return to_checksum(caller)
        except ValueError:
            raise InvalidAddress("Caller is not a valid address", caller=repr(caller)) from None

    def _require_admin(self, caller: str) -> None:
        if caller != self._administrator:
            logger.warning("Rejected privileged call from %s", shorten_eth_address(caller))
            raise NotAdministrator("Only the administrator may call this", caller=caller)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    @operation
    def initialize(self, caller: str) -> str:
        """Claim the administrator role; succeeds exactly once."""
        if self._initialized:
            raise AlreadyInitialized("Ledger is already initialized", administrator=self._administrator)
        admin = self._identity(caller)

        self._administrator = admin
        self._initialized = True
        logger.info("Ledger initialized, administrator %s", shorten_eth_address(admin))
        self._store.publish("initialized", f"Administrator {shorten_eth_address(admin)}", {"administrator": admin})
        return admin

    @operation
    def set_commitment(self, caller: str, commitment: BytesLike) -> str:
        self._require_initialized()
        self._require_admin(self._identity(caller))
        if self._commitment is not None:
            raise CommitmentAlreadySet("Commitment is already set and cannot change")
        if self._phase != Phase.AWAITING_COMMITMENT:
            raise WrongPhase("Commitment can only be set before stakes open", phase=self._phase.name)
        digest = normalize_commitment(commitment)

        self._commitment = digest
        self._phase = Phase.ACCEPTING_STAKES
        logger.info("Commitment set to 0x%s; accepting stakes", digest.hex())
        self._store.publish("commitment_set", "Commitment published; stakes open", {"commitment": "0x" + digest.hex()})
        return "0x" + digest.hex()

    @operation
    def place_stake(self, caller: str, value: int, amount: int) -> int:
        """Stake ``amount`` on guess ``value``; returns the caller's stake on it."""
        self._require_initialized()
        participant = self._identity(caller)
        if self._phase != Phase.ACCEPTING_STAKES:
            raise WrongPhase("Stakes are only accepted while the round is open", phase=self._phase.name)
        validate_guess(value)
        self._stakes.check_stake(value, participant, amount)

        stake = self._stakes.add_stake(value, participant, amount)
        self._pot.credit(amount)
        logger.info("Stake of %s on %s from %s (now %s, pot %s)",
                    amount, value, shorten_eth_address(participant), stake, self._pot.balance)
        self._store.publish(
            "stake_placed",
            f"{shorten_eth_address(participant)} staked {amount} on {value}",
            {"participant": participant, "value": value, "amount": amount, "stake": stake,
             "value_total": self._stakes.total_for(value)},
        )
        return stake

    @operation
    def reveal(self, caller: str, secret: int, salt: BytesLike) -> SettlementReport:
        """Verify the preimage, then settle the pot in the same call."""
        self._require_initialized()
        self._require_admin(self._identity(caller))
        if self._revealed:
            raise AlreadyRevealed("The secret has already been revealed", revealed_value=self._revealed_value)
        if self._commitment is None:
            raise NoCommitment("No commitment has been set")
        validate_guess(secret)
        normalize_salt(salt)
        verify_commitment(self._commitment, secret, salt)

        self._revealed = True
        self._revealed_value = secret
        self._phase = Phase.REVEALED
        logger.info("Commitment verified; revealed value %s", secret)
        self._store.publish("revealed", f"Revealed value {secret}", {"value": secret, "pool": self._pot.balance})

        self._report = self._settlement.settle(secret)
        for payout in self._report.payouts:
            if payout.outcome == PayoutOutcome.IN_FLIGHT:
                self._in_flight.append(InFlightTransfer(payout.participant, payout.share, payout.tx_hash, "payout"))
        self._phase = Phase.SETTLED
        self._store.publish("settled", f"Settlement of {secret} complete", self._report.to_dict())
        return self._report

    @operation
    def withdraw(self, caller: str) -> int:
        """Pull the caller's pending balance.

        A failed transfer leaves the balance intact. An unconfirmed one keeps
        it taken, since the value may still arrive, and raises TransferInFlight.
        """
        self._require_initialized()
        participant = self._identity(caller)
        amount = self._pending.take(participant)
        self._pot.debit(amount)

        if not self._send(participant, amount, "withdrawal"):
            self._pot.credit(amount)
            self._pending.restore(participant, amount)
            logger.warning("Withdrawal of %s by %s failed; balance restored", amount, shorten_eth_address(participant))
            raise TransferFailed("Withdrawal transfer failed; balance preserved for retry",
                                 participant=participant, amount=amount)

        logger.info("Withdrawal of %s by %s", amount, shorten_eth_address(participant))
        self._store.publish("withdrawal", f"{shorten_eth_address(participant)} withdrew {amount}",
                            {"participant": participant, "amount": amount})
        return amount

    @operation
    def recover_unclaimed(self, caller: str) -> int:
        """Sweep everything not owed to a participant to the administrator."""
        self._require_initialized()
        admin = self._identity(caller)
        self._require_admin(admin)
        if not self._revealed:
            raise WrongPhase("Unclaimed funds can only be recovered after reveal", phase=self._phase.name)
        amount = self.recoverable()
        if amount <= 0:
            raise NothingToRecover("No unclaimed balance to recover", balance=self._pot.balance)

        self._pot.debit(amount)
        if not self._send(admin, amount, "recovery"):
            self._pot.credit(amount)
            logger.error("Recovery transfer of %s to administrator failed", amount)
            raise TransferFailed("Recovery transfer failed", amount=amount)

        logger.info("Recovered %s unclaimed to administrator", amount)
        self._store.publish("unclaimed_recovered", f"Administrator recovered {amount}",
                            {"administrator": admin, "amount": amount})
        return amount

    def _send(self, recipient: str, amount: int, purpose: str) -> bool:
        """Transfer with the pot already debited; in-flight transfers keep that debit."""
        try:
            return self._transfer.send(recipient, amount)
        except TransferInFlight as exc:
            self._in_flight.append(InFlightTransfer(recipient, amount, exc.tx_hash, purpose))
            logger.warning("%s of %s to %s unconfirmed (tx %s)",
                           purpose.capitalize(), amount, shorten_eth_address(recipient), exc.tx_hash)
            self._store.publish("transfer_in_flight", f"{purpose.capitalize()} of {amount} awaiting confirmation",
                                {"recipient": recipient, "amount": amount, "tx_hash": exc.tx_hash, "purpose": purpose})
            raise

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def participants_of(self, value: int) -> List[str]:
        with self._lock:
            return self._stakes.participants_of(value)

    def stake_of(self, value: int, participant: str) -> int:
        with self._lock:
            return self._stakes.stake_of(value, self._identity(participant))

    def total_for(self, value: int) -> int:
        with self._lock:
            return self._stakes.total_for(value)

    def pending_of(self, participant: str) -> int:
        with self._lock:
            return self._pending.balance_of(self._identity(participant))

    def in_flight_transfers(self) -> List[InFlightTransfer]:
        with self._lock:
            return list(self._in_flight)

    def recoverable(self) -> int:
        with self._lock:
            return self._pot.balance - self._pending.total_owed()

    @property
    def balance(self) -> int:
        return self._pot.balance

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def administrator(self) -> Optional[str]:
        return self._administrator

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def revealed(self) -> bool:
        return self._revealed

    @property
    def revealed_value(self) -> Optional[int]:
        return self._revealed_value

    @property
    def commitment(self) -> Optional[str]:
        return "0x" + self._commitment.hex() if self._commitment is not None else None

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def settlement_report(self) -> Optional[SettlementReport]:
        return self._report

    def signed_settlement_report(self) -> Optional[Dict[str, Any]]:
        if self._report is None or self._signer is None:
            return None
        return self._signer.sign(self._report.to_dict())

    def snapshot(self) -> LedgerState:
        with self._lock:
            stakes, participants, totals = self._stakes.snapshot()
            return LedgerState(
                initialized=self._initialized,
                administrator=self._administrator,
                phase=self._phase,
                commitment=self.commitment,
                commitment_set=self._commitment is not None,
                revealed=self._revealed,
                revealed_value=self._revealed_value,
                balance=self._pot.balance,
                stakes=stakes,
                participants=participants,
                totals=totals,
                pending_withdrawals=self._pending.snapshot(),
                in_flight=list(self._in_flight),
            )

    def _publish_state(self) -> None:
        self._store.set_ledger_state(self.snapshot().to_dict())
