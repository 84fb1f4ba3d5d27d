"""Escrow signer client."""

import logging
from typing import Any, Dict

from core.errors import TransportError
from core.http import JsonHttpClient

logger = logging.getLogger(__name__)


def _content(response: Any, endpoint: str) -> Dict[str, Any]:
    """Accept both ``{"content": {...}}`` replies and bare objects."""
    if not isinstance(response, dict):
        raise TransportError("Escrow signer returned a non-object response", endpoint=endpoint)
    if response.get("status") == "error":
        raise TransportError(response.get("reason") or "Escrow signer refused the request", endpoint=endpoint)
    content = response.get("content", response)
    if not isinstance(content, dict):
        raise TransportError("Escrow signer response has no content", endpoint=endpoint)
    return content


class EscrowSignerClient(JsonHttpClient):
    """Third party that co-signs the escrowed leg of a trade."""

    service_name = "escrow signer"

    async def get_public_key(self, network: str) -> str:
        """Escrow public key (hex) for ``network``."""
        content = _content(await self._post("/escrow_key", {"network": network}), self.endpoint)
        public_key = content.get("public_key")
        if not public_key:
            raise TransportError("Escrow signer did not return a public key", endpoint=self.endpoint)
        logger.info(f"Escrow signer key for {network}: {public_key[:16]}...")
        return public_key

    async def get_signature(self, message: str, public_key: str, network: str) -> Dict[str, str]:
        """Ask the escrow signer to sign ``message`` with ``public_key``.

        Returns:
            ``{"public_key": ..., "signature": ...}`` as returned by the signer
        """
        body = {"message": message, "public_key": public_key, "network": network}
        content = _content(await self._post("/escrow_signature", body), self.endpoint)
        if not content.get("public_key") or not content.get("signature"):
            raise TransportError("Escrow signer returned an incomplete signature", endpoint=self.endpoint)
        return {"public_key": content["public_key"], "signature": content["signature"]}
