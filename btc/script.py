"""Bitcoin script primitives: opcodes, pushes, numbers and parsing."""

from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union

# Opcodes used by the engine
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_2 = 0x52
OP_16 = 0x60
OP_IF = 0x63
OP_NOTIF = 0x64
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_VERIFY = 0x69
OP_RETURN = 0x6A
OP_DROP = 0x75
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_SHA256 = 0xA8
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKMULTISIG = 0xAE
OP_CHECKMULTISIGVERIFY = 0xAF
OP_CHECKLOCKTIMEVERIFY = 0xB1

OPCODE_NAMES = {
    OP_0: "OP_0",
    OP_1NEGATE: "OP_1NEGATE",
    OP_IF: "OP_IF",
    OP_NOTIF: "OP_NOTIF",
    OP_ELSE: "OP_ELSE",
    OP_ENDIF: "OP_ENDIF",
    OP_VERIFY: "OP_VERIFY",
    OP_RETURN: "OP_RETURN",
    OP_DROP: "OP_DROP",
    OP_DUP: "OP_DUP",
    OP_EQUAL: "OP_EQUAL",
    OP_EQUALVERIFY: "OP_EQUALVERIFY",
    OP_SHA256: "OP_SHA256",
    OP_HASH160: "OP_HASH160",
    OP_CHECKSIG: "OP_CHECKSIG",
    OP_CHECKSIGVERIFY: "OP_CHECKSIGVERIFY",
    OP_CHECKMULTISIG: "OP_CHECKMULTISIG",
    OP_CHECKMULTISIGVERIFY: "OP_CHECKMULTISIGVERIFY",
    OP_CHECKLOCKTIMEVERIFY: "OP_CHECKLOCKTIMEVERIFY",
}
OPCODE_NAMES.update({OP_1 + i: f"OP_{i + 1}" for i in range(16)})

# Opcodes are ints, data pushes are bytes
Element = Union[int, bytes]


class ScriptParseError(ValueError):
    """Raised when serialized script bytes are truncated or malformed."""
    pass


def encode_number(value: int) -> bytes:
    """Minimal little-endian script number encoding."""
    if value == 0:
        return b""
    negative = value < 0
    magnitude = abs(value)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def decode_number(data: bytes) -> int:
    if not data:
        return 0
    value = int.from_bytes(data, "little")
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


def small_int(value: int) -> Element:
    """Element pushing ``value``, using OP_0..OP_16 when possible."""
    if value == 0:
        return OP_0
    if 1 <= value <= 16:
        return OP_1 + value - 1
    return encode_number(value)


def element_number(element: Element) -> int:
    """Numeric value of a push element (small int opcode or bytes)."""
    if isinstance(element, bytes):
        return decode_number(element)
    if element == OP_0:
        return 0
    if element == OP_1NEGATE:
        return -1
    if OP_1 <= element <= OP_16:
        return element - OP_1 + 1
    raise ValueError(f"Element {element:#x} is not a number push")


def _encode_push(data: bytes) -> bytes:
    length = len(data)
    if length == 0:
        return bytes([OP_0])
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


@dataclass(frozen=True, eq=False)
class Script:
    """Sequence of opcodes and data pushes.

    Two scripts are equal when they serialize to the same bytes.
    """
    elements: Tuple[Element, ...] = ()

    @classmethod
    def of(cls, *elements: Element) -> "Script":
        return cls(tuple(elements))

    def extended(self, elements: Iterable[Element]) -> "Script":
        return Script(self.elements + tuple(elements))

    def serialize(self) -> bytes:
        out = bytearray()
        for element in self.elements:
            if isinstance(element, bytes):
                out += _encode_push(element)
            else:
                out.append(element)
        return bytes(out)

    def hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Script":
        """Parse serialized script bytes.

        Raises:
            ScriptParseError: If a push runs past the end of the script
        """
        elements: List[Element] = []
        i = 0
        while i < len(raw):
            op = raw[i]
            i += 1
            if 0 < op < OP_PUSHDATA1:
                length = op
            elif op == OP_PUSHDATA1:
                length = _read_length(raw, i, 1)
                i += 1
            elif op == OP_PUSHDATA2:
                length = _read_length(raw, i, 2)
                i += 2
            elif op == OP_PUSHDATA4:
                length = _read_length(raw, i, 4)
                i += 4
            else:
                elements.append(op)
                continue
            if i + length > len(raw):
                raise ScriptParseError(f"Push of {length} bytes runs past end of script")
            elements.append(raw[i:i + length])
            i += length
        return cls(tuple(elements))

    @classmethod
    def from_hex(cls, script_hex: str) -> "Script":
        return cls.from_bytes(bytes.fromhex(script_hex))

    def pushes(self) -> List[bytes]:
        return [e for e in self.elements if isinstance(e, bytes)]

    def contains_push(self, data: bytes) -> bool:
        return data in self.pushes()

    def is_push_only(self) -> bool:
        return all(
            isinstance(e, bytes) or e in (OP_0, OP_1NEGATE) or OP_1 <= e <= OP_16
            for e in self.elements
        )

    def to_asm(self) -> str:
        return " ".join(
            e.hex() if isinstance(e, bytes) else OPCODE_NAMES.get(e, f"OP_UNKNOWN_{e:#x}")
            for e in self.elements
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Script):
            return NotImplemented
        return self.serialize() == other.serialize()

    def __hash__(self) -> int:
        return hash(self.serialize())

    def __len__(self) -> int:
        return len(self.elements)

    def __repr__(self) -> str:
        return f"Script({self.to_asm()!r})"


def _read_length(raw: bytes, offset: int, size: int) -> int:
    if offset + size > len(raw):
        raise ScriptParseError("Truncated push length")
    return int.from_bytes(raw[offset:offset + size], "little")


def p2pkh_script(key_hash: bytes) -> Script:
    """OP_DUP OP_HASH160 <hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return Script.of(OP_DUP, OP_HASH160, key_hash, OP_EQUALVERIFY, OP_CHECKSIG)
