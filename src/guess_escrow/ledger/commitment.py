"""Commitment hashing and verification.

A commitment binds the administrator to a guess before any stake is visible:

    commitment = keccak256(uint8(secret) || bytes32(salt))

which is the packed ABI encoding Solidity produces for
``keccak256(abi.encodePacked(uint8 secret, bytes32 salt))``. Verification is a
pure function of its inputs.
"""

from __future__ import annotations

import hmac
import secrets
from typing import Union

from eth_utils import keccak

from guess_escrow.ledger.errors import CommitmentMismatch, InvalidCommitment, InvalidGuess, InvalidSalt
from guess_escrow.ledger.models import GUESS_MAX, GUESS_MIN

HASH_SIZE = 32
SALT_SIZE = 32

BytesLike = Union[bytes, bytearray, str]


def _to_bytes(value: BytesLike, size: int, error: type, label: str) -> bytes:
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise error(f"{label} is not valid hex", value=value) from None
    elif isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        raise error(f"{label} must be bytes or a hex string", type=type(value).__name__)

    if len(raw) != size:
        raise error(f"{label} must be exactly {size} bytes, got {len(raw)}", length=len(raw))
    return raw


def normalize_commitment(value: BytesLike) -> bytes:
    """Return the 32-byte commitment; rejects malformed and all-zero hashes."""
    raw = _to_bytes(value, HASH_SIZE, InvalidCommitment, "Commitment")
    if not any(raw):
        raise InvalidCommitment("Commitment must not be all zero")
    return raw


def normalize_salt(value: BytesLike) -> bytes:
    return _to_bytes(value, SALT_SIZE, InvalidSalt, "Salt")


def validate_guess(value: object) -> int:
    # bool is an int subclass but never a valid guess
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidGuess("Guess must be an integer", value=repr(value))
    if not GUESS_MIN <= value <= GUESS_MAX:
        raise InvalidGuess(f"Guess must be between {GUESS_MIN} and {GUESS_MAX}", value=value)
    return value


def encode_reveal(secret: int, salt: BytesLike) -> bytes:
    """Packed encoding of (secret, salt): one byte followed by 32 bytes."""
    return bytes([validate_guess(secret)]) + normalize_salt(salt)


def compute_commitment(secret: int, salt: BytesLike) -> bytes:
    return keccak(encode_reveal(secret, salt))


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_SIZE)


def matches(commitment: BytesLike, secret: int, salt: BytesLike) -> bool:
    """True when (secret, salt) is the preimage of ``commitment``."""
    expected = normalize_commitment(commitment)
    return hmac.compare_digest(compute_commitment(secret, salt), expected)


def verify_commitment(commitment: BytesLike, secret: int, salt: BytesLike) -> None:
    """Raise CommitmentMismatch unless (secret, salt) hashes to ``commitment``."""
    if not matches(commitment, secret, salt):
        raise CommitmentMismatch("Revealed secret and salt do not match the commitment")
