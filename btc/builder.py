"""Bitcoin side of a trade: UTXO selection, fees, escrow script and staged transactions.

Every builder here is pure: it takes the data it needs explicitly and returns
a ``Result``. Nothing is fetched or broadcast from this module.
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from btc.interpreter import check_signature, verify_input
from btc.keys import BitcoinKey, verify_der
from btc.script import (
    OP_1,
    OP_2,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKMULTISIG,
    OP_CHECKSIG,
    OP_DROP,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUALVERIFY,
    OP_HASH160,
    OP_IF,
    Script,
    element_number,
    p2pkh_script,
    small_int,
)
from btc.transaction import SEQUENCE_LOCKTIME, SIGHASH_ALL, Transaction, TxInput, TxOutput
from core.errors import ExpectationMismatch, InsufficientFunds, NoFundsFound, SignatureInvalid
from core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

SATOSHIS_PER_COIN = 100_000_000
INPUT_SIZE = 148
OUTPUT_SIZE = 34
SATOSHIS_PER_BYTE = 20
BLOCK_TIME_SECS = 600
SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class FeeSchedule:
    """Fee and unit constants for the bitcoin network in use."""
    satoshis_per_byte: int = SATOSHIS_PER_BYTE
    input_size: int = INPUT_SIZE
    output_size: int = OUTPUT_SIZE
    satoshis_per_coin: int = SATOSHIS_PER_COIN
    block_time_secs: int = BLOCK_TIME_SECS


@dataclass(frozen=True)
class UtxoInput:
    address: str
    amount: int  # satoshis
    script_hex: str
    tx_id: str
    output_index: int

    def to_tx_input(self) -> TxInput:
        return TxInput(
            txid=self.tx_id,
            output_index=self.output_index,
            prev_script=Script.from_hex(self.script_hex),
            amount=self.amount,
        )


@dataclass(frozen=True)
class UtxoSelection:
    inputs: List[UtxoInput]
    total_available: int


@dataclass(frozen=True)
class Stage1Expectations:
    """What a received stage 1 transaction must satisfy.

    Attributes:
        amount: Satoshis that must be locked in the escrow output
        our_public_key: Our compressed public key (hex)
        escrow_public_key: The escrow signer's public key (hex)
        escrow_script: Exact locking script to require, if known
    """
    amount: int
    our_public_key: str
    escrow_public_key: str
    escrow_script: Optional[Script] = None


def coins_to_satoshis(value: Any, satoshis_per_coin: int = SATOSHIS_PER_COIN) -> int:
    """Convert a decimal coin string to satoshis without float rounding.

    Raises:
        ValueError: If the value is not a decimal number
    """
    try:
        coins = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid coin value: {value!r}")
    return int(coins * satoshis_per_coin)


def satoshis_to_coins(amount: int, satoshis_per_coin: int = SATOSHIS_PER_COIN) -> str:
    return format(Decimal(amount) / Decimal(satoshis_per_coin), "f")


def select_utxos(oracle_response: Dict[str, Any], address: str,
                 satoshis_per_coin: int = SATOSHIS_PER_COIN) -> Result[UtxoSelection]:
    """Flatten an oracle response into spendable inputs.

    Args:
        oracle_response: ``{"data": {"address", "txs": [...]}}`` as returned by the oracle
        address: Address the outputs belong to
        satoshis_per_coin: Unit conversion for the ``value`` strings

    Returns:
        Ok(UtxoSelection), or Err(NoFundsFound) when there is nothing to spend
    """
    data = oracle_response.get("data") or {}
    txs = data.get("txs") or []
    if not txs:
        return Err(NoFundsFound(f"No UTXO entries found for {address}"))

    try:
        inputs = [
            UtxoInput(
                address=data.get("address") or address,
                amount=coins_to_satoshis(tx["value"], satoshis_per_coin),
                script_hex=tx["script_hex"],
                tx_id=tx["txid"],
                output_index=int(tx["output_no"]),
            )
            for tx in txs
        ]
    except (KeyError, TypeError, ValueError) as e:
        return Err(NoFundsFound(f"Malformed UTXO entry for {address}: {e}"))

    return Ok(UtxoSelection(inputs, sum(i.amount for i in inputs)))


def calculate_fee(satoshis_per_byte: int, input_count: int, amount: int, total_available: int,
                  input_size: int = INPUT_SIZE, output_size: int = OUTPUT_SIZE) -> Result[int]:
    """Estimate the fee for spending ``input_count`` inputs.

    A zero fee is a valid result.

    Returns:
        Ok(fee in satoshis), or Err(InsufficientFunds) when the inputs cannot
        cover ``amount`` plus the fee
    """
    tx_size = input_count * input_size + output_size + 10 - input_count
    fee = satoshis_per_byte * tx_size
    if total_available - amount - fee < 0:
        return Err(InsufficientFunds(
            f"Need {amount} + {fee} fee satoshis, only {total_available} available"
        ))
    return Ok(fee)


def locktime_from_days(days: float, start_height: int, block_time_secs: int = BLOCK_TIME_SECS) -> int:
    return int(days * SECONDS_PER_DAY // block_time_secs) + start_height


def locktime_in_days(blocks: int, block_time_secs: int = BLOCK_TIME_SECS) -> float:
    return blocks * block_time_secs / SECONDS_PER_DAY


def build_escrow_script(their_key: bytes, escrow_key: bytes, our_refund_key_hash: bytes,
                        lock_days: float, start_height: int,
                        block_time_secs: int = BLOCK_TIME_SECS) -> Script:
    """Locking script: 2-of-2 with the escrow signer, or our refund after the locktime."""
    locktime = locktime_from_days(lock_days, start_height, block_time_secs)
    return Script.of(
        OP_IF,
        OP_2, their_key, escrow_key, OP_2, OP_CHECKMULTISIG,
        OP_ELSE,
        small_int(locktime), OP_CHECKLOCKTIMEVERIFY, OP_DROP,
        OP_DUP, OP_HASH160, our_refund_key_hash, OP_EQUALVERIFY, OP_CHECKSIG,
        OP_ENDIF,
    )


def escrow_locktime(script: Script) -> int:
    """Locktime committed to in an escrow script's refund branch.

    Raises:
        ValueError: If ``script`` is not an escrow script
    """
    elements = script.elements
    if OP_ELSE not in elements or OP_CHECKLOCKTIMEVERIFY not in elements:
        raise ValueError("Not an escrow script")
    return element_number(elements[elements.index(OP_ELSE) + 1])


def escrow_keys(script: Script) -> List[bytes]:
    """The two multisig keys of an escrow script, counterparty first."""
    elements = script.elements
    if not elements or elements[0] != OP_IF or OP_CHECKMULTISIG not in elements:
        raise ValueError("Not an escrow script")
    return [e for e in elements[2:elements.index(OP_CHECKMULTISIG)] if isinstance(e, bytes)]


def _sign_input(tx: Transaction, index: int, key: BitcoinKey, script_code: Script) -> bytes:
    return key.sign_digest(tx.signature_hash(index, script_code, SIGHASH_ALL)) + bytes([SIGHASH_ALL])


def _assemble(selection: UtxoSelection, key: BitcoinKey, payment: TxOutput, fee: int) -> Transaction:
    change = selection.total_available - payment.amount - fee
    outputs = [payment]
    if change > 0:
        outputs.append(TxOutput(change, p2pkh_script(key.key_hash)))
    return Transaction(
        inputs=tuple(i.to_tx_input() for i in selection.inputs),
        outputs=tuple(outputs),
    )


def build_stage1_transaction(oracle_response: Dict[str, Any], our_key: BitcoinKey, their_key: bytes,
                             escrow_key: bytes, amount: int, lock_days: float, start_height: int,
                             fees: FeeSchedule = FeeSchedule()) -> Result[Transaction]:
    """Lock ``amount`` satoshis into the escrow script.

    The escrow output is always at index 0, change back to our P2PKH address
    follows only when positive. Every input is signed by ``our_key``.
    """
    selected = select_utxos(oracle_response, our_key.address, fees.satoshis_per_coin)
    if not selected.is_ok():
        return selected
    selection = selected.value

    fee = calculate_fee(fees.satoshis_per_byte, len(selection.inputs), amount,
                        selection.total_available, fees.input_size, fees.output_size)
    if not fee.is_ok():
        return fee

    script = build_escrow_script(their_key, escrow_key, our_key.key_hash,
                                 lock_days, start_height, fees.block_time_secs)
    tx = _assemble(selection, our_key, TxOutput(amount, script), fee.value)

    for i, tx_input in enumerate(tx.inputs):
        signature = _sign_input(tx, i, our_key, tx_input.prev_script)
        tx = tx.with_script_sig(i, Script.of(signature, our_key.public_key))

    logger.info(
        f"Built stage 1 transaction {tx.txid[:16]}... locking {amount} satoshis "
        f"until block {escrow_locktime(script)}"
    )
    return Ok(tx)


def escrow_outputs_as_utxos(stage1: Transaction, public_key: bytes, address: str = "",
                            satoshis_per_coin: int = SATOSHIS_PER_COIN) -> Dict[str, Any]:
    """Describe the stage 1 outputs locked to ``public_key`` in oracle response form."""
    return {
        "data": {
            "address": address,
            "txs": [
                {
                    "value": satoshis_to_coins(output.amount, satoshis_per_coin),
                    "script_hex": output.script.hex(),
                    "txid": stage1.txid,
                    "output_no": n,
                }
                for n, output in enumerate(stage1.outputs)
                if output.script.contains_push(public_key) and OP_CHECKMULTISIG in output.script.elements
            ],
        },
    }


def build_stage2_partial(oracle_response: Dict[str, Any], our_key: BitcoinKey, amount: int,
                         applied_signature: Optional[bytes] = None,
                         fees: FeeSchedule = FeeSchedule()) -> Result[Transaction]:
    """Spend escrow locked outputs back to ourselves, missing the escrow signature.

    Each input's unlocking script is ``OP_0 <our signature>``; only the escrow
    signer's signature can complete it.

    Args:
        oracle_response: Escrow outputs in oracle response form
        our_key: Our key, named first in the escrow multisig
        amount: Satoshis to pay to our address
        applied_signature: Signature to place in every input instead of signing afresh
        fees: Fee constants
    """
    selected = select_utxos(oracle_response, our_key.address, fees.satoshis_per_coin)
    if not selected.is_ok():
        return selected
    selection = selected.value

    fee = calculate_fee(fees.satoshis_per_byte, len(selection.inputs), amount,
                        selection.total_available, fees.input_size, fees.output_size)
    if not fee.is_ok():
        return fee

    tx = _assemble(selection, our_key, TxOutput(amount, p2pkh_script(our_key.key_hash)), fee.value)

    for i, tx_input in enumerate(tx.inputs):
        signature = applied_signature or _sign_input(tx, i, our_key, tx_input.prev_script)
        tx = tx.with_script_sig(i, Script.of(b"", signature))

    logger.info(f"Built partial stage 2 transaction {tx.txid[:16]}... paying {amount} satoshis")
    return Ok(tx)


def stage2_messages(tx: Transaction) -> List[str]:
    """Digests the escrow signer must sign, one per input (hex)."""
    return [tx.signature_hash(i, tx_input.prev_script).hex() for i, tx_input in enumerate(tx.inputs)]


def apply_escrow_signatures(tx: Transaction, escrow_public_key: bytes,
                            signatures: Sequence[bytes]) -> Result[Transaction]:
    """Complete a partial stage 2 transaction with DER signatures from the escrow signer.

    Returns:
        Ok(completed transaction), or Err(SignatureInvalid) if a signature does
        not verify against the escrow key
    """
    if len(signatures) != len(tx.inputs):
        return Err(SignatureInvalid(
            f"Expected {len(tx.inputs)} escrow signatures, got {len(signatures)}"
        ))

    for i, (tx_input, signature) in enumerate(zip(tx.inputs, signatures)):
        digest = tx.signature_hash(i, tx_input.prev_script)
        if not verify_der(escrow_public_key, digest, signature):
            return Err(SignatureInvalid(f"Escrow signature for input {i} does not verify"))
        tx = tx.with_script_sig(i, tx_input.script_sig.extended([signature + bytes([SIGHASH_ALL]), OP_1]))

    for i in range(len(tx.inputs)):
        if not verify_input(tx, i):
            return Err(SignatureInvalid(f"Completed input {i} does not satisfy its escrow script"))
    return Ok(tx)


def build_refund_transaction(stage1: Transaction, our_key: BitcoinKey,
                             fees: FeeSchedule = FeeSchedule()) -> Result[Transaction]:
    """Reclaim the escrow output of our stage 1 transaction after its locktime."""
    escrow_output = stage1.outputs[0]
    try:
        locktime = escrow_locktime(escrow_output.script)
    except ValueError as e:
        return Err(ExpectationMismatch(f"Stage 1 output 0 is not an escrow output: {e}"))

    fee = calculate_fee(fees.satoshis_per_byte, 1, 0, escrow_output.amount,
                        fees.input_size, fees.output_size)
    if not fee.is_ok():
        return fee

    tx = Transaction(
        inputs=(TxInput(
            txid=stage1.txid,
            output_index=0,
            sequence=SEQUENCE_LOCKTIME,
            prev_script=escrow_output.script,
            amount=escrow_output.amount,
        ),),
        outputs=(TxOutput(escrow_output.amount - fee.value, p2pkh_script(our_key.key_hash)),),
        locktime=locktime,
    )
    signature = _sign_input(tx, 0, our_key, escrow_output.script)
    # Empty top element selects the refund branch
    tx = tx.with_script_sig(0, Script.of(signature, our_key.public_key, b""))
    logger.info(f"Built refund transaction {tx.txid[:16]}... valid from block {locktime}")
    return Ok(tx)


def check_stage1(transaction: Transaction, expectations: Stage1Expectations) -> Result[Transaction]:
    """Validate a received stage 1 transaction, saying why it fails."""
    for i in range(len(transaction.inputs)):
        if not verify_input(transaction, i):
            return Err(SignatureInvalid(f"Input {i} of stage 1 transaction fails its script"))

    our_key = bytes.fromhex(expectations.our_public_key)
    escrow_key = bytes.fromhex(expectations.escrow_public_key)
    ours = [o for o in transaction.outputs if o.script.contains_push(our_key)]
    escrow = [o for o in transaction.outputs if o.script.contains_push(escrow_key)]

    if len(ours) != 1:
        return Err(ExpectationMismatch(f"Expected one output naming our key, found {len(ours)}"))
    if len(escrow) != 1:
        return Err(ExpectationMismatch(f"Expected one output naming the escrow key, found {len(escrow)}"))
    if ours[0].amount != expectations.amount:
        return Err(ExpectationMismatch(
            f"Locked amount {ours[0].amount} does not match expected {expectations.amount}"
        ))
    if expectations.escrow_script is not None and ours[0].script != expectations.escrow_script:
        return Err(ExpectationMismatch("Escrow script does not match the agreed script"))
    return Ok(transaction)


def verify_stage1(transaction: Transaction, expectations: Stage1Expectations) -> bool:
    return check_stage1(transaction, expectations).is_ok()


def check_stage2_partial(transaction: Transaction, signer_public_key: bytes) -> Result[Transaction]:
    """Check that every input carries the counterparty's multisig signature."""
    if not transaction.inputs:
        return Err(ExpectationMismatch("Stage 2 transaction has no inputs"))
    for i, tx_input in enumerate(transaction.inputs):
        pushes = tx_input.script_sig.elements
        if len(pushes) != 2 or not isinstance(pushes[1], bytes):
            return Err(ExpectationMismatch(f"Input {i} is not a partial multisig unlock"))
        if not check_signature(pushes[1], signer_public_key, tx_input.prev_script, transaction, i):
            return Err(SignatureInvalid(f"Counterparty signature on input {i} does not verify"))
    return Ok(transaction)


def replace_prevouts(transaction: Transaction, prevouts: Sequence[TxOutput]) -> Transaction:
    """Attach the outputs being spent, as known locally, to each input."""
    inputs = tuple(
        replace(tx_input, prev_script=prevout.script, amount=prevout.amount)
        for tx_input, prevout in zip(transaction.inputs, prevouts)
    )
    return replace(transaction, inputs=inputs)
