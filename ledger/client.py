"""Native ledger compute node client."""

import logging
from typing import Any, Dict, List, Sequence

from core.errors import TransportError
from core.http import JsonHttpClient

logger = logging.getLogger(__name__)


def _content(response: Any, endpoint: str) -> Any:
    if isinstance(response, dict) and response.get("status") == "Error":
        raise TransportError(response.get("reason") or "Compute node rejected the request", endpoint=endpoint)
    if isinstance(response, dict) and "content" in response:
        return response["content"]
    return response


class ComputeNodeClient(JsonHttpClient):
    """Reads balances from and submits transactions to a compute node."""

    service_name = "compute node"

    async def fetch_balance(self, addresses: Sequence[str]) -> Dict[str, Any]:
        """Balance snapshot for ``addresses``.

        Returns:
            ``{address: {"outputs": [{"previous_out", "amount", "asset_type", ...}]}}``
        """
        content = _content(await self._post("/fetch_balance", {"address_list": list(addresses)}), self.endpoint)
        snapshot = content.get("address_list") if isinstance(content, dict) and "address_list" in content else content
        if not isinstance(snapshot, dict):
            raise TransportError("Compute node returned a malformed balance", endpoint=self.endpoint)
        logger.debug(f"Fetched balance for {len(addresses)} addresses")
        return snapshot

    async def create_transactions(self, transactions: List[Dict[str, Any]]) -> Any:
        """Submit transactions for inclusion in the next block."""
        content = _content(await self._post("/create_transactions", transactions), self.endpoint)
        logger.info(f"Submitted {len(transactions)} transactions to the compute node")
        return content
