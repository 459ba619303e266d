"""On-chain value transfer backend for the escrow ledger."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3RPCError

from guess_escrow.ledger.errors import TransferInFlight
from guess_escrow.utils.common import shorten_eth_address
from guess_escrow.utils.config import get_int
from guess_escrow.utils.key_manager import check_escrow_key
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

# Plain value transfer to an externally owned account
BASE_TRANSFER_GAS = 21000


class Web3Transfer:
    """Sends native value from the escrow account with a bounded gas budget.

    ``send`` returns False only when the value certainly did not move: the
    transaction could not be prepared, the node rejected it, or the receipt
    shows a revert. Once the transaction may have reached the network, a
    missing receipt raises TransferInFlight with the transaction hash. The gas
    budget is the base transfer cost plus the configured stipend for recipient
    code. Nonces count pending transactions so a stuck one is never reused.
    """

    def __init__(self, config: Dict[str, Any], w3: Optional[Web3] = None) -> None:
        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://localhost:8545")
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.tx_timeout: int = int(blockchain_cfg.get("tx_timeout", 120))
        self.gas_limit: int = BASE_TRANSFER_GAS + get_int(config, "ledger.transfer_gas_limit", 2300)

        private_key = blockchain_cfg.get("escrow_private_key")
        if not private_key:
            raise ValueError("blockchain.escrow_private_key is required for the web3 transfer backend")
        check_escrow_key(private_key, blockchain_cfg.get("escrow_address"))
        self.account = Account.from_key(private_key)
        logger.info("Escrow account loaded: %s", self.account.address)

        self._gas_price_override: Optional[int] = None
        gas_price_setting = blockchain_cfg.get("gas_price")
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")

        self._w3 = w3 or Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.tx_timeout}))

    @property
    def address(self) -> str:
        return self.account.address

    def is_connected(self) -> bool:
        try:
            return bool(self._w3.is_connected())
        except Exception as exc:
            logger.warning("RPC connectivity probe failed: %s", exc)
            return False

    def escrow_balance(self) -> int:
        return int(self._w3.eth.get_balance(self.account.address))

    def _build_transaction(self, recipient: str, amount: int) -> Dict[str, Any]:
        return {
            "to": Web3.to_checksum_address(recipient),
            "value": amount,
            "gas": self.gas_limit,
            "gasPrice": self._gas_price_override or self._w3.eth.gas_price,
            "nonce": self._w3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.chain_id,
        }

    def send(self, recipient: str, amount: int) -> bool:
        try:
            signed = self.account.sign_transaction(self._build_transaction(recipient, amount))
        except Exception as exc:
            logger.error("Could not prepare transfer of %s wei to %s: %s", amount, shorten_eth_address(recipient), exc)
            return False
        tx_hash = "0x" + bytes(signed.hash).hex()

        try:
            self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3RPCError, ValueError) as exc:
            # Rejected by the node, never broadcast
            logger.error("Transfer of %s wei to %s rejected: %s", amount, shorten_eth_address(recipient), exc)
            return False
        except Exception as exc:
            raise self._in_flight(recipient, amount, tx_hash, exc) from exc

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except Exception as exc:
            raise self._in_flight(recipient, amount, tx_hash, exc) from exc

        if int(receipt["status"]) != 1:
            logger.error("Transfer of %s wei to %s reverted in block %s",
                         amount, shorten_eth_address(recipient), receipt.get("blockNumber"))
            return False

        logger.info("Transferred %s wei to %s (gas used %s)",
                    amount, shorten_eth_address(recipient), receipt.get("gasUsed"))
        return True

    @staticmethod
    def _in_flight(recipient: str, amount: int, tx_hash: str, cause: Exception) -> TransferInFlight:
        logger.warning("Transfer of %s wei to %s unconfirmed (tx %s): %s",
                       amount, shorten_eth_address(recipient), tx_hash, cause)
        return TransferInFlight("Transfer broadcast but not confirmed", tx_hash=tx_hash,
                                recipient=recipient, amount=amount)

    def health_check(self) -> Dict[str, Any]:
        connected = self.is_connected()
        result: Dict[str, Any] = {
            "status": "ok" if connected else "error",
            "rpc_url": self.rpc_url,
            "chain_id": self.chain_id,
            "escrow_address": self.account.address,
        }
        if connected:
            try:
                result["escrow_balance_wei"] = self.escrow_balance()
            except Exception as exc:
                result["detail"] = str(exc)
        return result
