"""Escrow key validation utilities.

Validates Ethereum private keys and checks them against an expected address
before the web3 transfer backend is allowed to sign with them.
"""

import re
from typing import Optional, Tuple

from eth_account import Account

from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')


def validate_eth_private_key_format(private_key: str) -> Tuple[bool, str]:
    """Validate Ethereum private key format.

    Expected format: 0x followed by 64 hexadecimal characters

    Returns:
        tuple: (is_valid, error_message)
    """
    if not isinstance(private_key, str):
        return False, "Private key must be a string"

    if not private_key.startswith("0x"):
        return False, "Private key must start with '0x' prefix"

    if len(private_key) != 66:
        return False, f"Private key must be 66 characters long (0x + 64 hex), got {len(private_key)}"

    if not _KEY_PATTERN.match(private_key):
        return False, "Private key must contain only hexadecimal characters after '0x'"

    return True, ""


def derive_address_from_private_key(private_key: str) -> str:
    """Derive the checksummed address for a private key.

    Raises:
        ValueError: If private key is invalid
    """
    valid, error = validate_eth_private_key_format(private_key)
    if not valid:
        raise ValueError(error)
    return Account.from_key(private_key).address


def check_escrow_key(private_key: str, expected_address: Optional[str] = None) -> str:
    """Return the key's address, failing if it differs from ``expected_address``."""
    address = derive_address_from_private_key(private_key)
    if expected_address and address.lower() != expected_address.lower():
        logger.error("Escrow key derives %s but %s was configured", address, expected_address)
        raise ValueError(f"Escrow key address {address} does not match configured {expected_address}")
    return address
