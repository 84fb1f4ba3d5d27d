"""Native ledger half transactions for receipt based payments.

Each party of a settlement builds one half: it pays its side of the trade
and declares, under a shared correlation id (DRUID), what it expects to
receive. The ledger only accepts both halves together.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.assets import (
    DEFAULT_WATERMARK,
    AssetValue,
    add,
    asset_from_dict,
    compatible,
    new_asset,
    subtract,
    zero_like,
)
from core.errors import ExpectationMismatch, InsufficientFunds
from core.result import Err, Ok, Result
from core.types import Keypair
from wallet import sign_hex

logger = logging.getLogger(__name__)

DRUID_PREFIX = "DRUID"
DRUID_LENGTH = 16
PARTICIPANT_COUNT = 2

KeypairLookup = Callable[[str], Keypair]


def generate_correlation_id() -> str:
    """New DRUID: the prefix followed by random hex to 16 characters."""
    suffix_length = DRUID_LENGTH - len(DRUID_PREFIX)
    return DRUID_PREFIX + secrets.token_hex((suffix_length + 1) // 2)[:suffix_length]


def _sha3(text: str) -> str:
    return hashlib.sha3_256(text.encode()).hexdigest()


def commitment_hash(asset_type: str, amount: int) -> str:
    """Commitment to the asset an input carries."""
    return _sha3(f"{asset_type}:{amount}")


@dataclass(frozen=True)
class OutPoint:
    t_hash: str
    n: int

    def to_dict(self) -> Dict[str, Any]:
        return {"t_hash": self.t_hash, "n": self.n}

    def reference(self) -> str:
        return f"{self.t_hash}-{self.n}"


@dataclass(frozen=True)
class TxIn:
    previous_out: OutPoint
    signable_data: str
    signature: str
    public_key: str
    address_version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_out": self.previous_out.to_dict(),
            "script_signature": {
                "Pay2PkH": {
                    "signable_data": self.signable_data,
                    "signature": self.signature,
                    "public_key": self.public_key,
                    "address_version": self.address_version,
                },
            },
        }


@dataclass(frozen=True)
class TxOut:
    value: AssetValue
    script_public_key: str
    locktime: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value.to_dict(),
            "locktime": self.locktime,
            "drs_tx_hash": None,
            "drs_block_hash": None,
            "script_public_key": self.script_public_key,
        }


@dataclass(frozen=True)
class SwapExpectation:
    """What one half expects the other half to pay."""
    correlation_id: str
    asset: AssetValue
    from_commitment: str
    to_address: str

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_commitment, "to": self.to_address, "asset": self.asset.to_dict()}


@dataclass(frozen=True)
class HalfTransaction:
    inputs: List[TxIn]
    outputs: List[TxOut]
    expectations: List[SwapExpectation]
    correlation_id: str
    participant_count: int = PARTICIPANT_COUNT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": [i.to_dict() for i in self.inputs],
            "outputs": [o.to_dict() for o in self.outputs],
            "version": 2,
            "druid_info": {
                "druid": self.correlation_id,
                "participants": self.participant_count,
                "expectations": [e.to_dict() for e in self.expectations],
            },
        }


@dataclass(frozen=True)
class SnapshotOutput:
    """Spendable output listed in a balance snapshot."""
    address: str
    previous_out: OutPoint
    value: AssetValue


@dataclass(frozen=True)
class InputSelection:
    inputs: List[TxIn]
    used_addresses: List[str]
    total: AssetValue


@dataclass(frozen=True)
class HalfTransactionBuild:
    transaction: HalfTransaction
    used_addresses: List[str]


def parse_snapshot(snapshot: Dict[str, Any]) -> Dict[str, List[SnapshotOutput]]:
    """Group the outputs of a balance snapshot by address, preserving order.

    Raises:
        ValueError: If an output entry is malformed
    """
    grouped = {}
    for address, holding in snapshot.items():
        outputs = []
        for entry in (holding or {}).get("outputs", []):
            prev = entry["previous_out"]
            if "value" in entry:
                value = asset_from_dict(entry["value"])
            else:
                value = new_asset(
                    entry["asset_type"],
                    int(entry["amount"]),
                    entry.get("drs_tx_hash") or DEFAULT_WATERMARK,
                )
            outputs.append(SnapshotOutput(address, OutPoint(prev["t_hash"], int(prev["n"])), value))
        grouped[address] = outputs
    return grouped


def _sign_input(previous_out: OutPoint, value: AssetValue, keypair: Keypair) -> TxIn:
    commitment = commitment_hash(value.asset_type, value.amount)
    signable_data = _sha3(f"{previous_out.reference()}-{commitment}")
    return TxIn(
        previous_out=previous_out,
        signable_data=signable_data,
        signature=sign_hex(keypair.secret_key, signable_data),
        public_key=keypair.public_key.hex(),
        address_version=keypair.address_version,
    )


def select_inputs_for_amount(snapshot: Dict[str, Any], amount: int, asset_type: str,
                             keypair_lookup: KeypairLookup,
                             watermark: str = DEFAULT_WATERMARK) -> Result[InputSelection]:
    """Gather snapshot outputs until ``amount`` of the asset is covered.

    Addresses are walked in snapshot order; an address counts as used once
    every output it holds is spent.

    Returns:
        Ok(InputSelection), or Err(InsufficientFunds)
    """
    try:
        grouped = parse_snapshot(snapshot)
    except (KeyError, TypeError, ValueError) as e:
        return Err(InsufficientFunds(f"Balance snapshot is malformed: {e}"))

    target = new_asset(asset_type, amount, watermark)
    total = zero_like(target)
    inputs: List[TxIn] = []
    used_addresses: List[str] = []

    for address, outputs in grouped.items():
        if total.amount >= target.amount:
            break
        consumed = 0
        for output in outputs:
            if total.amount >= target.amount:
                break
            if not compatible(output.value, total):
                continue
            summed = add(total, output.value)
            if not summed.is_ok():
                return summed
            try:
                keypair = keypair_lookup(address)
            except KeyError as e:
                return Err(InsufficientFunds(f"Cannot sign for {address[:16]}...: {e}"))
            total = summed.value
            inputs.append(_sign_input(output.previous_out, output.value, keypair))
            consumed += 1
        if outputs and consumed == len(outputs):
            used_addresses.append(address)

    if total.amount < target.amount:
        return Err(InsufficientFunds(
            f"Snapshot holds {total.amount} {asset_type}, {amount} needed"
        ))
    return Ok(InputSelection(inputs, used_addresses, total))


def derive_spender_commitment(inputs: List[TxIn]) -> str:
    """Commitment identifying the spender of a half by the outputs it consumes."""
    return _sha3("".join(sorted(i.previous_out.reference() for i in inputs)))


def build_half_transaction(snapshot: Dict[str, Any], their_address: str, correlation_id: str,
                           their_commitment: str, send_amount: int, send_asset: str,
                           receive_amount: int, receive_asset: str, our_receive_address: str,
                           change_address: str, keypair_lookup: KeypairLookup,
                           send_watermark: str = DEFAULT_WATERMARK,
                           receive_watermark: str = DEFAULT_WATERMARK) -> Result[HalfTransactionBuild]:
    """Build our half of a settlement.

    Pays ``send_amount`` of ``send_asset`` to ``their_address``, returns any
    excess to ``change_address`` and expects ``receive_amount`` of
    ``receive_asset`` from the holder of ``their_commitment`` at
    ``our_receive_address``.
    """
    if send_amount <= 0:
        return Err(ExpectationMismatch(f"Half transaction must pay a positive amount, got {send_amount}"))

    selected = select_inputs_for_amount(snapshot, send_amount, send_asset, keypair_lookup, send_watermark)
    if not selected.is_ok():
        return selected
    selection = selected.value

    payment = new_asset(send_asset, send_amount, send_watermark)
    outputs = [TxOut(payment, their_address)]
    excess = subtract(selection.total, payment)
    if not excess.is_ok():
        return excess
    if excess.value.amount > 0:
        outputs.append(TxOut(excess.value, change_address))

    expected = new_asset(receive_asset, receive_amount, receive_watermark)
    expectation = SwapExpectation(correlation_id, expected, their_commitment, our_receive_address)

    transaction = HalfTransaction(selection.inputs, outputs, [expectation], correlation_id)
    logger.info(
        f"Built half transaction for {correlation_id}: {len(selection.inputs)} inputs, "
        f"paying {send_amount} {send_asset} to {their_address[:16]}..."
    )
    return Ok(HalfTransactionBuild(transaction, selection.used_addresses))


def pays(half: Dict[str, Any], address: str, asset: AssetValue) -> bool:
    """Whether a serialized half transaction pays exactly ``asset`` to ``address``."""
    for output in half.get("outputs", []):
        if output.get("script_public_key") != address:
            continue
        try:
            value = asset_from_dict(output["value"])
        except (KeyError, TypeError, ValueError):
            continue
        if compatible(value, asset) and value.amount == asset.amount:
            return True
    return False
