"""Mailbox relay client."""

import logging
from typing import Any, Dict

from core.errors import TransportError
from core.http import JsonHttpClient

logger = logging.getLogger(__name__)


class MailboxClient(JsonHttpClient):
    """Posts signed envelopes built by ``intercom.codec`` to the relay."""

    service_name = "mailbox"

    async def set_data(self, envelope: Dict[str, Any]) -> None:
        await self._post("/set_data", envelope)
        logger.debug(f"Left mailbox entry for {envelope['key'][:16]}...")

    async def get_data(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """Every entry currently stored for the envelope's key.

        Raises:
            TransportError: If the relay fails or answers with a non-object
        """
        response = await self._post("/get_data", envelope)
        if response is None:
            return {}
        if not isinstance(response, dict):
            raise TransportError("Mailbox returned a non-object response", endpoint=self.endpoint)
        return response

    async def delete_data(self, envelope: Dict[str, Any]) -> None:
        await self._post("/del_data", envelope)
        logger.debug(f"Deleted mailbox entry {envelope['field'][:16]}... for {envelope['key'][:16]}...")
