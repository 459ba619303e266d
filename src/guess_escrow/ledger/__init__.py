"""Commit-reveal betting ledger: stakes, settlement and pending withdrawals."""

from guess_escrow.ledger.commitment import compute_commitment, generate_salt, verify_commitment
from guess_escrow.ledger.game import GuessingGame
from guess_escrow.ledger.models import Phase
from guess_escrow.ledger.transfers import InMemoryTransfer, ValueTransfer

__all__ = [
    "GuessingGame",
    "InMemoryTransfer",
    "Phase",
    "ValueTransfer",
    "compute_commitment",
    "generate_salt",
    "verify_commitment",
]
