"""Exception taxonomy for ledger operations.

Every rejected call raises a subclass of LedgerError before any state is
touched. The seven families map to distinct caller remedies:

- AuthenticationError: request signature missing, invalid or replayed
- AuthorizationError: wrong caller for an administrator-only action
- PhaseError: operation invoked outside its lifecycle phase
- ValidationError: malformed or out-of-range input
- VerificationError: revealed preimage does not match the commitment
- TransferError: the outbound value transfer failed
- StateError: nothing to withdraw or recover, or a nested call

TransferInFlight is the exception to the rule above: it reports a transfer
whose effects already stand.
"""

from __future__ import annotations

from typing import Any, Dict


class LedgerError(Exception):
    """Base class; ``code`` is a stable identifier used in API payloads."""

    code = "ledger_error"
    retryable = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "category": self.category,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    @property
    def category(self) -> str:
        for family in (AuthenticationError, AuthorizationError, PhaseError, ValidationError,
                       VerificationError, TransferError, StateError):
            if isinstance(self, family):
                return family.__name__
        return LedgerError.__name__


class AuthenticationError(LedgerError):
    code = "unauthenticated"


class AuthorizationError(LedgerError):
    code = "unauthorized"


class PhaseError(LedgerError):
    code = "wrong_phase"


class ValidationError(LedgerError):
    code = "invalid_input"


class VerificationError(LedgerError):
    code = "verification_failed"


class TransferError(LedgerError):
    code = "transfer_failed"


class StateError(LedgerError):
    code = "invalid_state"


# Authentication
class InvalidSignature(AuthenticationError):
    code = "invalid_signature"


class NonceReused(AuthenticationError):
    code = "nonce_reused"


# Authorization
class NotAdministrator(AuthorizationError):
    code = "not_administrator"


# Phase
class NotInitialized(PhaseError):
    code = "not_initialized"


class AlreadyInitialized(PhaseError):
    code = "already_initialized"


class WrongPhase(PhaseError):
    code = "wrong_phase"


class NoCommitment(PhaseError):
    code = "no_commitment"


class AlreadyRevealed(PhaseError):
    code = "already_revealed"


# Validation
class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidGuess(ValidationError):
    code = "invalid_guess"


class InvalidCommitment(ValidationError):
    code = "invalid_commitment"


class CommitmentAlreadySet(ValidationError):
    code = "commitment_already_set"


class InvalidAddress(ValidationError):
    code = "invalid_address"


class InvalidSalt(ValidationError):
    code = "invalid_salt"


class ParticipantLimitReached(ValidationError):
    code = "participant_limit_reached"


# Verification
class CommitmentMismatch(VerificationError):
    code = "commitment_mismatch"


# Transfer
class TransferFailed(TransferError):
    code = "transfer_failed"
    retryable = True


class TransferInFlight(TransferError):
    """Broadcast but unconfirmed; the value may still arrive, so nothing is rolled back."""

    code = "transfer_in_flight"

    def __init__(self, message: str = "", tx_hash: str = "", **details: Any) -> None:
        super().__init__(message, tx_hash=tx_hash, **details)
        self.tx_hash = tx_hash


# State
class NothingToWithdraw(StateError):
    code = "nothing_to_withdraw"


class NothingToRecover(StateError):
    code = "nothing_to_recover"


class ReentrantCall(StateError):
    code = "reentrant_call"
