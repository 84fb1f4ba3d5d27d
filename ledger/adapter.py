"""Native ledger implementation of the trade settlement adapter."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from core.assets import DEFAULT_WATERMARK, AssetValue, new_asset
from core.errors import TransportError
from core.result import Err, Ok, Result
from ledger import swap
from ledger.client import ComputeNodeClient
from ledger.swap import HalfTransactionBuild, KeypairLookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementTerms:
    """Our side of the native ledger exchange.

    Attributes:
        addresses: Addresses whose balance may fund our half
        send_amount: Amount we pay
        send_asset: Asset type we pay ("Token" or "Receipt")
        receive_amount: Amount we expect back
        receive_asset: Asset type we expect back
        their_payment_address: Where our payment goes
        our_receive_address: Where we expect to be paid
        change_address: Where excess from our inputs goes
        keypair_lookup: Signing keypair for each funding address
    """
    addresses: List[str]
    send_amount: int
    send_asset: str
    receive_amount: int
    receive_asset: str
    their_payment_address: str
    our_receive_address: str
    change_address: str
    keypair_lookup: KeypairLookup
    send_watermark: str = DEFAULT_WATERMARK
    receive_watermark: str = DEFAULT_WATERMARK

    @property
    def sends(self) -> AssetValue:
        return new_asset(self.send_asset, self.send_amount, self.send_watermark)

    @property
    def receives(self) -> AssetValue:
        return new_asset(self.receive_asset, self.receive_amount, self.receive_watermark)


class NativeLedgerAdapter:
    """Builds and submits our half of a native ledger settlement."""

    def __init__(self, client: ComputeNodeClient):
        self.client = client

    async def fetch_snapshot(self, addresses: Sequence[str]) -> Result[Dict[str, Any]]:
        try:
            return Ok(await self.client.fetch_balance(addresses))
        except TransportError as e:
            return Err(e)

    def spender_commitment(self, snapshot: Dict[str, Any], terms: SettlementTerms) -> Result[str]:
        selected = swap.select_inputs_for_amount(
            snapshot, terms.send_amount, terms.send_asset, terms.keypair_lookup, terms.send_watermark,
        )
        if not selected.is_ok():
            return selected
        return Ok(swap.derive_spender_commitment(selected.value.inputs))

    def build_half(self, snapshot: Dict[str, Any], terms: SettlementTerms, their_commitment: str,
                   correlation_id: str) -> Result[HalfTransactionBuild]:
        return swap.build_half_transaction(
            snapshot,
            terms.their_payment_address,
            correlation_id,
            their_commitment,
            terms.send_amount,
            terms.send_asset,
            terms.receive_amount,
            terms.receive_asset,
            terms.our_receive_address,
            terms.change_address,
            terms.keypair_lookup,
            terms.send_watermark,
            terms.receive_watermark,
        )

    async def submit_half(self, half: HalfTransactionBuild) -> Result[str]:
        transaction = half.transaction
        try:
            await self.client.create_transactions([transaction.to_dict()])
        except TransportError as e:
            logger.error(f"Failed to submit half transaction {transaction.correlation_id}: {e}")
            return Err(e)
        return Ok(transaction.correlation_id)
