"""Signed-request authentication for the ledger gateway.

A caller proves its address by signing an EIP-191 personal message that binds
the ledger operation, its canonical JSON body and a one-time nonce::

    guess-escrow:<operation>:<nonce>:<canonical json body>

The gateway recovers the signer with eth_account and uses that address as the
caller. A nonce is accepted once per address, so a captured request cannot be
replayed.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Dict, Optional, Set, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct

from guess_escrow.ledger.audit import canonical_json
from guess_escrow.ledger.errors import InvalidSignature, NonceReused
from guess_escrow.utils.common import shorten_eth_address
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

MESSAGE_PREFIX = "guess-escrow"
MAX_NONCE_LENGTH = 128


def request_message(operation: str, payload: Optional[Dict[str, Any]], nonce: str) -> str:
    body = canonical_json(payload or {}).decode("utf-8")
    return f"{MESSAGE_PREFIX}:{operation}:{nonce}:{body}"


def sign_request(private_key: str, operation: str, payload: Optional[Dict[str, Any]], nonce: str) -> str:
    """Client side: return the 0x-hex signature for a request."""
    message = encode_defunct(text=request_message(operation, payload, nonce))
    signed = Account.sign_message(message, private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def recover_caller(
    operation: str,
    payload: Optional[Dict[str, Any]],
    nonce: Optional[str],
    signature: Optional[str],
) -> str:
    if not signature:
        raise InvalidSignature("Request signature is required", operation=operation)
    if not nonce or len(nonce) > MAX_NONCE_LENGTH:
        raise InvalidSignature(f"Request nonce is required (at most {MAX_NONCE_LENGTH} characters)",
                               operation=operation)
    message = encode_defunct(text=request_message(operation, payload, nonce))
    try:
        return Account.recover_message(message, signature=signature)
    except Exception as exc:
        raise InvalidSignature("Request signature could not be verified", operation=operation) from exc


class NonceRegistry:
    """Remembers every (address, nonce) pair already accepted."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._seen: Set[Tuple[str, str]] = set()

    def consume(self, address: str, nonce: str) -> None:
        with self._lock:
            if (address, nonce) in self._seen:
                raise NonceReused("Nonce already used by this caller", nonce=nonce)
            self._seen.add((address, nonce))


class RequestAuthenticator:
    def __init__(self) -> None:
        self._nonces = NonceRegistry()

    def authenticate(
        self,
        operation: str,
        payload: Optional[Dict[str, Any]],
        nonce: Optional[str],
        signature: Optional[str],
        claimed_address: Optional[str] = None,
    ) -> str:
        """Return the signer's address, rejecting claims it does not back."""
        caller = recover_caller(operation, payload, nonce, signature)
        if claimed_address and claimed_address.lower() != caller.lower():
            logger.warning("Signature for %s recovered %s, not the claimed %s",
                           operation, shorten_eth_address(caller), shorten_eth_address(claimed_address))
            raise InvalidSignature("Signature does not belong to the claimed caller", operation=operation)
        self._nonces.consume(caller, nonce)
        return caller
