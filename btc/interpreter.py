"""Script interpreter for the opcodes the engine emits."""

import hashlib
import logging
from typing import List

from btc.keys import hash160, verify_der
from btc.script import (
    OP_0,
    OP_1,
    OP_16,
    OP_1NEGATE,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKMULTISIG,
    OP_CHECKMULTISIGVERIFY,
    OP_CHECKSIG,
    OP_CHECKSIGVERIFY,
    OP_DROP,
    OP_DUP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUAL,
    OP_EQUALVERIFY,
    OP_HASH160,
    OP_IF,
    OP_NOTIF,
    OP_RETURN,
    OP_SHA256,
    OP_VERIFY,
    OPCODE_NAMES,
    Script,
    decode_number,
    encode_number,
)
from btc.transaction import LOCKTIME_THRESHOLD, SEQUENCE_FINAL, SIGHASH_ALL, Transaction

logger = logging.getLogger(__name__)

MAX_PUBKEYS_PER_MULTISIG = 20


class ScriptFailure(Exception):
    """Script evaluation failed."""
    pass


def cast_to_bool(value: bytes) -> bool:
    for i, byte in enumerate(value):
        if byte != 0:
            # Negative zero is false
            return not (i == len(value) - 1 and byte == 0x80)
    return False


def check_signature(signature: bytes, public_key: bytes, script_code: Script,
                    tx: Transaction, index: int) -> bool:
    """Check a DER signature plus sighash byte against input ``index``."""
    if not signature:
        return False
    if signature[-1] != SIGHASH_ALL:
        return False
    digest = tx.signature_hash(index, script_code, SIGHASH_ALL)
    return verify_der(public_key, digest, signature[:-1])


class _Machine:
    def __init__(self, tx: Transaction, index: int):
        self.tx = tx
        self.index = index
        self.stack: List[bytes] = []

    def pop(self) -> bytes:
        if not self.stack:
            raise ScriptFailure("Stack underflow")
        return self.stack.pop()

    def pop_number(self) -> int:
        return decode_number(self.pop())

    def run(self, script: Script) -> None:
        branches: List[bool] = []
        for element in script.elements:
            executing = all(branches)

            if isinstance(element, bytes):
                if executing:
                    self.stack.append(element)
                continue

            if element in (OP_IF, OP_NOTIF):
                value = False
                if executing:
                    value = cast_to_bool(self.pop())
                    if element == OP_NOTIF:
                        value = not value
                branches.append(value)
                continue
            if element == OP_ELSE:
                if not branches:
                    raise ScriptFailure("OP_ELSE without OP_IF")
                branches[-1] = not branches[-1]
                continue
            if element == OP_ENDIF:
                if not branches:
                    raise ScriptFailure("OP_ENDIF without OP_IF")
                branches.pop()
                continue
            if not executing:
                continue

            self.step(element, script)

        if branches:
            raise ScriptFailure("Unbalanced conditional")

    def step(self, op: int, script: Script) -> None:
        if op == OP_0:
            self.stack.append(b"")
        elif op == OP_1NEGATE:
            self.stack.append(encode_number(-1))
        elif OP_1 <= op <= OP_16:
            self.stack.append(encode_number(op - OP_1 + 1))
        elif op == OP_VERIFY:
            self.verify(self.pop())
        elif op == OP_RETURN:
            raise ScriptFailure("OP_RETURN")
        elif op == OP_DROP:
            self.pop()
        elif op == OP_DUP:
            top = self.pop()
            self.stack.extend([top, top])
        elif op in (OP_EQUAL, OP_EQUALVERIFY):
            equal = self.pop() == self.pop()
            if op == OP_EQUALVERIFY:
                if not equal:
                    raise ScriptFailure("OP_EQUALVERIFY failed")
            else:
                self.stack.append(b"\x01" if equal else b"")
        elif op == OP_SHA256:
            self.stack.append(hashlib.sha256(self.pop()).digest())
        elif op == OP_HASH160:
            self.stack.append(hash160(self.pop()))
        elif op in (OP_CHECKSIG, OP_CHECKSIGVERIFY):
            public_key = self.pop()
            signature = self.pop()
            ok = check_signature(signature, public_key, script, self.tx, self.index)
            self.push_result(ok, op == OP_CHECKSIGVERIFY)
        elif op in (OP_CHECKMULTISIG, OP_CHECKMULTISIGVERIFY):
            ok = self.check_multisig(script)
            self.push_result(ok, op == OP_CHECKMULTISIGVERIFY)
        elif op == OP_CHECKLOCKTIMEVERIFY:
            self.check_locktime()
        else:
            raise ScriptFailure(f"Unsupported opcode {OPCODE_NAMES.get(op, hex(op))}")

    def verify(self, value: bytes) -> None:
        if not cast_to_bool(value):
            raise ScriptFailure("OP_VERIFY failed")

    def push_result(self, ok: bool, verify: bool) -> None:
        if verify:
            if not ok:
                raise ScriptFailure("Signature check failed")
        else:
            self.stack.append(b"\x01" if ok else b"")

    def check_multisig(self, script: Script) -> bool:
        key_count = self.pop_number()
        if not 0 <= key_count <= MAX_PUBKEYS_PER_MULTISIG:
            raise ScriptFailure(f"Invalid public key count {key_count}")
        public_keys = [self.pop() for _ in range(key_count)][::-1]
        sig_count = self.pop_number()
        if not 0 <= sig_count <= key_count:
            raise ScriptFailure(f"Invalid signature count {sig_count}")
        signatures = [self.pop() for _ in range(sig_count)][::-1]
        # Extra element consumed by CHECKMULTISIG
        self.pop()

        # Signatures must appear in the same order as their keys
        key_pos = 0
        for signature in signatures:
            while key_pos < len(public_keys):
                matched = check_signature(signature, public_keys[key_pos], script, self.tx, self.index)
                key_pos += 1
                if matched:
                    break
            else:
                return False
        return True

    def check_locktime(self) -> None:
        if not self.stack:
            raise ScriptFailure("Stack underflow")
        required = decode_number(self.stack[-1])
        if required < 0:
            raise ScriptFailure("Negative locktime")
        if (required < LOCKTIME_THRESHOLD) != (self.tx.locktime < LOCKTIME_THRESHOLD):
            raise ScriptFailure("Locktime type mismatch")
        if self.tx.locktime < required:
            raise ScriptFailure(f"Locktime {self.tx.locktime} below required {required}")
        if self.tx.inputs[self.index].sequence == SEQUENCE_FINAL:
            raise ScriptFailure("Input sequence is final")


def verify_input(tx: Transaction, index: int) -> bool:
    """Run input ``index``'s unlocking script against the output it spends."""
    tx_input = tx.inputs[index]
    if not tx_input.script_sig.is_push_only():
        logger.debug(f"Input {index} of {tx.txid[:16]}... has a non push-only scriptSig")
        return False

    machine = _Machine(tx, index)
    try:
        machine.run(tx_input.script_sig)
        machine.run(tx_input.prev_script)
    except ScriptFailure as e:
        logger.debug(f"Input {index} of {tx.txid[:16]}... failed: {e}")
        return False
    return bool(machine.stack) and cast_to_bool(machine.stack[-1])


def verify_transaction(tx: Transaction) -> bool:
    return bool(tx.inputs) and all(verify_input(tx, i) for i in range(len(tx.inputs)))
