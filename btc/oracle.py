"""UTXO oracle (block indexer) client."""

import logging
from typing import Any, Dict

from core.errors import TransportError
from core.http import JsonHttpClient

logger = logging.getLogger(__name__)


class UtxoOracleClient(JsonHttpClient):
    """Fetches unspent outputs and broadcasts raw transactions.

    Responses follow the SoChain layout:
    ``{"data": {"address": ..., "txs": [{"value", "script_hex", "txid", "output_no"}]}}``
    """

    service_name = "UTXO oracle"

    def __init__(self, endpoint: str, network: str = "BTC", timeout: float = 30.0):
        super().__init__(endpoint, timeout)
        self.network = network

    async def fetch_utxos(self, address: str) -> Dict[str, Any]:
        """Unspent outputs held by ``address``.

        Raises:
            TransportError: If the oracle is unreachable or answers malformed data
        """
        response = await self._get(f"/{self.network}/{address}")
        if not isinstance(response, dict) or not isinstance(response.get("data"), dict):
            raise TransportError("Oracle response has no data object", endpoint=self.endpoint)
        logger.debug(f"Oracle returned {len(response['data'].get('txs') or [])} outputs for {address}")
        return response

    async def broadcast(self, tx_hex: str) -> str:
        """Submit a raw transaction.

        Returns:
            Transaction id reported by the oracle
        """
        response = await self._post(f"/send_tx/{self.network}", {"tx_hex": tx_hex})
        data = (response or {}).get("data") or {}
        txid = data.get("txid")
        if not txid:
            raise TransportError("Oracle did not return a txid", endpoint=self.endpoint, details=str(response)[:200])
        logger.info(f"Broadcast bitcoin transaction {txid[:16]}...")
        return txid
