"""Common utility functions for the escrow ledger."""

from web3 import Web3


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def is_eth_address(address: object) -> bool:
    return isinstance(address, str) and Web3.is_address(address)


def to_checksum(address: str) -> str:
    """Checksummed form of a 20-byte hex address; raises ValueError when malformed."""
    if not is_eth_address(address):
        raise ValueError(f"Not an Ethereum address: {address!r}")
    return Web3.to_checksum_address(address)
