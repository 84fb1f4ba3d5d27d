"""Legacy bitcoin transaction serialization and signature hashing."""

import hashlib
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Tuple

from btc.script import Script

SIGHASH_ALL = 0x01
SEQUENCE_FINAL = 0xFFFFFFFF
# Any sequence below final enables nLockTime
SEQUENCE_LOCKTIME = 0xFFFFFFFE
# Locktimes below this are block heights
LOCKTIME_THRESHOLD = 500_000_000


def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


class _Reader:
    def __init__(self, raw: bytes):
        self.raw = raw
        self.pos = 0

    def read(self, n: int) -> bytes:
        if self.pos + n > len(self.raw):
            raise ValueError("Transaction data is truncated")
        chunk = self.raw[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def read_int(self, n: int) -> int:
        return int.from_bytes(self.read(n), "little")

    def read_varint(self) -> int:
        prefix = self.read_int(1)
        if prefix == 0xFD:
            return self.read_int(2)
        if prefix == 0xFE:
            return self.read_int(4)
        if prefix == 0xFF:
            return self.read_int(8)
        return prefix


@dataclass(frozen=True)
class TxInput:
    """Input spending ``txid:output_index``.

    ``prev_script`` and ``amount`` describe the output being spent; they are
    not part of the serialized transaction but are needed to sign and verify.
    """
    txid: str
    output_index: int
    script_sig: Script = field(default_factory=Script)
    sequence: int = SEQUENCE_FINAL
    prev_script: Script = field(default_factory=Script)
    amount: int = 0

    def serialize(self) -> bytes:
        script = self.script_sig.serialize()
        return (
            bytes.fromhex(self.txid)[::-1]
            + self.output_index.to_bytes(4, "little")
            + encode_varint(len(script))
            + script
            + self.sequence.to_bytes(4, "little")
        )


@dataclass(frozen=True)
class TxOutput:
    amount: int  # satoshis
    script: Script

    def serialize(self) -> bytes:
        script = self.script.serialize()
        return self.amount.to_bytes(8, "little") + encode_varint(len(script)) + script


@dataclass(frozen=True)
class Transaction:
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]
    version: int = 1
    locktime: int = 0

    def serialize(self) -> bytes:
        out = bytearray(self.version.to_bytes(4, "little"))
        out += encode_varint(len(self.inputs))
        for tx_input in self.inputs:
            out += tx_input.serialize()
        out += encode_varint(len(self.outputs))
        for tx_output in self.outputs:
            out += tx_output.serialize()
        out += self.locktime.to_bytes(4, "little")
        return bytes(out)

    def hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return double_sha256(self.serialize())[::-1].hex()

    @property
    def fee(self) -> int:
        return sum(i.amount for i in self.inputs) - sum(o.amount for o in self.outputs)

    def signature_hash(self, index: int, script_code: Script, sighash_type: int = SIGHASH_ALL) -> bytes:
        """Legacy signature digest for input ``index``.

        Every other input's script is blanked and the signed input carries
        ``script_code``.
        """
        if not 0 <= index < len(self.inputs):
            raise IndexError(f"Input index {index} out of range")
        inputs = tuple(
            replace(tx_input, script_sig=script_code if i == index else Script())
            for i, tx_input in enumerate(self.inputs)
        )
        preimage = replace(self, inputs=inputs).serialize() + sighash_type.to_bytes(4, "little")
        return double_sha256(preimage)

    def with_script_sig(self, index: int, script_sig: Script) -> "Transaction":
        inputs = list(self.inputs)
        inputs[index] = replace(inputs[index], script_sig=script_sig)
        return replace(self, inputs=tuple(inputs))

    @classmethod
    def parse(cls, raw: bytes) -> "Transaction":
        """Parse a legacy serialized transaction.

        Raises:
            ValueError: If the bytes are truncated or carry trailing data
        """
        reader = _Reader(raw)
        version = reader.read_int(4)
        inputs = []
        for _ in range(reader.read_varint()):
            txid = reader.read(32)[::-1].hex()
            output_index = reader.read_int(4)
            script_sig = Script.from_bytes(reader.read(reader.read_varint()))
            sequence = reader.read_int(4)
            inputs.append(TxInput(txid, output_index, script_sig, sequence))
        outputs = []
        for _ in range(reader.read_varint()):
            amount = reader.read_int(8)
            outputs.append(TxOutput(amount, Script.from_bytes(reader.read(reader.read_varint()))))
        locktime = reader.read_int(4)
        if reader.pos != len(raw):
            raise ValueError("Trailing bytes after transaction")
        return cls(tuple(inputs), tuple(outputs), version, locktime)

    def to_dict(self) -> Dict[str, Any]:
        """Mailbox form: raw hex plus the outputs being spent."""
        return {
            "hex": self.hex(),
            "prevouts": [
                {"script_hex": i.prev_script.hex(), "amount": i.amount}
                for i in self.inputs
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        """Rebuild a transaction from its mailbox form.

        Raises:
            ValueError: If the payload is malformed
        """
        tx = cls.parse(bytes.fromhex(data["hex"]))
        prevouts: List[Dict[str, Any]] = data.get("prevouts") or []
        if len(prevouts) != len(tx.inputs):
            raise ValueError("Prevout count does not match input count")
        inputs = tuple(
            replace(tx_input, prev_script=Script.from_hex(p["script_hex"]), amount=int(p["amount"]))
            for tx_input, p in zip(tx.inputs, prevouts)
        )
        return replace(tx, inputs=inputs)
