#!/usr/bin/env python3
"""
Escrow Ledger Application

Entry point that wires configuration, the transfer backend, the ledger and
the FastAPI web server together, then serves until SIGINT/SIGTERM.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from guess_escrow.blockchain.client import Web3Transfer
from guess_escrow.ledger.audit import ReportSigner
from guess_escrow.ledger.event_manager import MemoryStore
from guess_escrow.ledger.game import GuessingGame
from guess_escrow.ledger.transfers import InMemoryTransfer
from guess_escrow.utils.config import get_config_value, get_int, load_config
from guess_escrow.utils.logger import get_logger
from guess_escrow.web_server import LedgerWebServer

logger = get_logger(__name__)


def build_transfer(config: Dict[str, Any]):
    """Select the transfer backend named by ``ledger.transfer_backend``."""
    backend = str(get_config_value(config, "ledger.transfer_backend", "memory")).lower()
    if backend == "web3":
        return Web3Transfer(config)
    if backend == "memory":
        return InMemoryTransfer(gas_limit=get_int(config, "ledger.transfer_gas_limit", 2300))
    raise ValueError(f"Unknown transfer backend: {backend}")


def build_signer(config: Dict[str, Any]) -> ReportSigner:
    key_file = get_config_value(config, "ledger.report_signing_key")
    if key_file:
        logger.info("Loading settlement report signing key from %s", key_file)
        return ReportSigner.from_pem(Path(key_file).read_bytes())
    logger.info("Generating ephemeral settlement report signing key")
    return ReportSigner()


class EscrowLedgerApp:
    """Builds the ledger services and runs the web server until shutdown."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.transfer = build_transfer(config)
        self.store = MemoryStore(feed_capacity=get_int(config, "ledger.feed_capacity", 100))
        self.game = GuessingGame.from_config(config, self.transfer, store=self.store, signer=build_signer(config))
        health = getattr(self.transfer, "health_check", None)
        self.web_server = LedgerWebServer(config, self.game, transfer_health=health)
        self.running = True

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Transfer backend: {get_config_value(self.config, 'ledger.transfer_backend', 'memory')}")
        logger.info(f"Transfer gas limit: {get_int(self.config, 'ledger.transfer_gas_limit', 2300)}")
        logger.info(f"Max participants per value: {get_int(self.config, 'ledger.max_participants_per_value', 500)}")
        logger.info(f"RPC URL: {get_config_value(self.config, 'blockchain.rpc_url', 'Not configured')}")
        logger.info(f"Server: {self.host}:{self.port}")
        logger.info("=" * 60)

    @property
    def host(self) -> str:
        return str(get_config_value(self.config, "server.host", "0.0.0.0"))

    @property
    def port(self) -> int:
        return get_int(self.config, "server.port", 6080)

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    async def start(self) -> None:
        self._display_config_summary()
        server_task = asyncio.create_task(self.web_server.start(host=self.host, port=self.port))
        try:
            while self.running and not server_task.done():
                await asyncio.sleep(1)
            if server_task.done() and server_task.exception():
                raise server_task.exception()
        finally:
            await self.stop()
            server_task.cancel()

    async def stop(self) -> None:
        logger.info("Stopping escrow ledger application")
        self.running = False
        await self.web_server.stop()
        self.store.clear_all_data()


async def main() -> None:
    load_dotenv(Path.cwd() / ".env")
    app = EscrowLedgerApp(load_config())

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Escrow ledger interrupted by user")
    except Exception as e:
        logger.exception(f"Escrow ledger failed: {e}")
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
