"""Swap service: wires transports, persistence and the trade session together."""

import logging

from btc.adapter import BitcoinAdapter
from btc.oracle import UtxoOracleClient
from config import EngineConfig
from database import TradeDatabase
from escrow.client import EscrowSignerClient
from intercom.client import MailboxClient
from ledger.adapter import NativeLedgerAdapter
from ledger.client import ComputeNodeClient
from trade.engine import TradeSession
from trade.store import TradeStore

logger = logging.getLogger(__name__)


class SwapService:
    """Owns the long-lived clients and the trade session built on them."""

    def __init__(self, config: EngineConfig):
        """Initialize the service.

        Args:
            config: Engine configuration
        """
        self.config = config
        self.running = False

        self.db = TradeDatabase(config.database_path)

        timeout = config.request_timeout_secs
        self.mailbox = MailboxClient(config.mailbox_url, timeout)
        self.escrow = EscrowSignerClient(config.escrow_url, timeout)
        self.oracle = UtxoOracleClient(config.oracle_url, config.btc_network, timeout)
        self.compute = ComputeNodeClient(config.compute_url, timeout)

        self.session = TradeSession(
            chain=BitcoinAdapter(self.oracle, config.fees),
            settlement=NativeLedgerAdapter(self.compute),
            mailbox=self.mailbox,
            escrow=self.escrow,
            config=config,
            store=TradeStore(self.db),
        )

        logger.info("Initialized Helix swap service")

    async def start(self) -> None:
        """Open the database and every client, then restore saved trades."""
        logger.info("Starting Helix swap service...")
        await self.db.start()
        for client in (self.mailbox, self.escrow, self.oracle, self.compute):
            await client.start()

        await self.session.restore()
        self.running = True
        logger.info("Helix swap service started")

    async def stop(self) -> None:
        """Close every client and the database."""
        logger.info("Stopping Helix swap service...")
        self.running = False
        for client in (self.mailbox, self.escrow, self.oracle, self.compute):
            await client.stop()
        await self.db.stop()
        logger.info("Helix swap service stopped")
