"""Bitcoin implementation of the trade chain adapter."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from btc import builder
from btc.builder import FeeSchedule, Stage1Expectations
from btc.keys import BitcoinKey
from btc.oracle import UtxoOracleClient
from btc.transaction import Transaction
from core.errors import ExpectationMismatch, TransportError
from core.result import Err, Ok, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BtcStage1Request:
    """Parameters for locking our coins into escrow.

    Attributes:
        key: Our bitcoin key, also the refund key
        their_public_key: Counterparty's compressed public key (hex)
        amount: Satoshis to lock
        lock_days: Days until the refund branch opens
        start_height: Current block height
    """
    key: BitcoinKey
    their_public_key: str
    amount: int
    lock_days: float
    start_height: int


@dataclass(frozen=True)
class BtcStage2Request:
    key: BitcoinKey
    amount: int
    applied_signature: Optional[bytes] = None


@dataclass(frozen=True)
class BtcStage2Expectations:
    signer_public_key: str  # counterparty's compressed public key (hex)


class BitcoinAdapter:
    """Builds, checks and broadcasts the bitcoin leg of a trade."""

    def __init__(self, oracle: UtxoOracleClient, fees: FeeSchedule = FeeSchedule(), name: str = "btc"):
        self.oracle = oracle
        self.fees = fees
        self.name = name

    async def build_stage1(self, request: BtcStage1Request, escrow_public_key: str) -> Result[Transaction]:
        try:
            utxos = await self.oracle.fetch_utxos(request.key.address)
        except TransportError as e:
            return Err(e)
        return builder.build_stage1_transaction(
            utxos,
            request.key,
            bytes.fromhex(request.their_public_key),
            bytes.fromhex(escrow_public_key),
            request.amount,
            request.lock_days,
            request.start_height,
            self.fees,
        )

    def decode(self, payload: Dict[str, Any]) -> Result[Transaction]:
        try:
            return Ok(Transaction.from_dict(payload))
        except (KeyError, TypeError, ValueError) as e:
            return Err(ExpectationMismatch(f"Malformed bitcoin transaction payload: {e}"))

    def encode(self, transaction: Transaction) -> Dict[str, Any]:
        return transaction.to_dict()

    def verify_stage1(self, payload: Dict[str, Any], expectations: Stage1Expectations) -> Result[Transaction]:
        decoded = self.decode(payload)
        if not decoded.is_ok():
            return decoded
        return builder.check_stage1(decoded.value, expectations)

    async def build_stage2_partial(self, request: BtcStage2Request, stage1: Transaction) -> Result[Transaction]:
        utxos = builder.escrow_outputs_as_utxos(
            stage1, request.key.public_key, request.key.address, self.fees.satoshis_per_coin,
        )
        return builder.build_stage2_partial(
            utxos, request.key, request.amount, request.applied_signature, self.fees,
        )

    def verify_stage2_partial(self, payload: Dict[str, Any], stage1: Transaction,
                              expectations: BtcStage2Expectations) -> Result[Transaction]:
        decoded = self.decode(payload)
        if not decoded.is_ok():
            return decoded
        tx = decoded.value

        # Prevouts come from our own stage 1, not from the payload
        prevouts = []
        for tx_input in tx.inputs:
            if tx_input.txid != stage1.txid or tx_input.output_index >= len(stage1.outputs):
                return Err(ExpectationMismatch(
                    f"Stage 2 spends {tx_input.txid[:16]}...:{tx_input.output_index}, not our stage 1"
                ))
            prevouts.append(stage1.outputs[tx_input.output_index])
        tx = builder.replace_prevouts(tx, prevouts)

        return builder.check_stage2_partial(tx, bytes.fromhex(expectations.signer_public_key))

    def escrow_messages(self, stage2: Transaction) -> List[str]:
        return builder.stage2_messages(stage2)

    def apply_escrow_signatures(self, stage2: Transaction, escrow_public_key: str,
                                signatures: Sequence[str]) -> Result[Transaction]:
        try:
            decoded = [bytes.fromhex(s) for s in signatures]
        except ValueError as e:
            return Err(ExpectationMismatch(f"Escrow signature is not hex: {e}"))
        return builder.apply_escrow_signatures(stage2, bytes.fromhex(escrow_public_key), decoded)

    async def build_refund(self, request: BitcoinKey, stage1: Transaction) -> Result[Transaction]:
        return builder.build_refund_transaction(stage1, request, self.fees)

    async def submit(self, transaction: Transaction) -> Result[str]:
        try:
            return Ok(await self.oracle.broadcast(transaction.hex()))
        except TransportError as e:
            logger.error(f"Failed to broadcast {transaction.txid[:16]}...: {e}")
            return Err(e)
