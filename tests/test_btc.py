"""
Unit tests for the bitcoin leg: keys, scripts, fees, escrow and staged transactions
"""

from dataclasses import replace

import pytest

from btc import builder
from btc.builder import FeeSchedule, Stage1Expectations
from btc.interpreter import verify_input, verify_transaction
from btc.keys import BitcoinKey, address_to_key_hash
from btc.script import OP_CHECKMULTISIG, OP_IF, Script, decode_number, encode_number, p2pkh_script
from btc.transaction import SEQUENCE_LOCKTIME, Transaction, TxOutput
from core.errors import (
    ConfigurationError,
    ExpectationMismatch,
    InsufficientFunds,
    NoFundsFound,
    SignatureInvalid,
)

START_HEIGHT = 800_000
LOCK_DAYS = 2
AMOUNT = 100_000
FUNDING = 1_000_000
MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


# =============================================================================
# Fixtures
# =============================================================================

def oracle_response(key, values=("0.01",)):
    return {
        "status": "success",
        "data": {
            "address": key.address,
            "txs": [
                {
                    "value": value,
                    "script_hex": p2pkh_script(key.key_hash).hex(),
                    "txid": f"{n:02x}" * 32,
                    "output_no": n,
                }
                for n, value in enumerate(values)
            ],
        },
    }


@pytest.fixture
def stage1(alice_btc, bob_btc, escrow_btc):
    """Alice locks coins for Bob, co-signed by the escrow."""
    return builder.build_stage1_transaction(
        oracle_response(alice_btc),
        alice_btc,
        bob_btc.public_key,
        escrow_btc.public_key,
        AMOUNT,
        LOCK_DAYS,
        START_HEIGHT,
    ).unwrap()


@pytest.fixture
def stage2(stage1, bob_btc):
    """Bob's partial claim on the escrow output."""
    utxos = builder.escrow_outputs_as_utxos(stage1, bob_btc.public_key, bob_btc.address)
    return builder.build_stage2_partial(utxos, bob_btc, 90_000).unwrap()


# =============================================================================
# Keys and scripts
# =============================================================================

class TestKeys:
    """secp256k1 keys and addresses."""

    def test_wif_round_trip(self, alice_btc):
        restored = BitcoinKey.from_wif(alice_btc.wif())
        assert restored.public_key == alice_btc.public_key
        assert restored.network == "BTC"

    def test_testnet_address(self):
        key = BitcoinKey.from_secret(bytes([0x11]) * 32, "BTCTEST")
        assert key.address[0] in "mn"
        assert address_to_key_hash(key.address) == key.key_hash

    def test_public_key_is_compressed(self, alice_btc):
        assert len(alice_btc.public_key) == 33
        assert alice_btc.public_key[0] in (2, 3)

    def test_from_mnemonic(self):
        first = BitcoinKey.from_mnemonic(MNEMONIC)
        assert first.address == "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"
        assert first.address == BitcoinKey.from_mnemonic(MNEMONIC).address
        assert first.address != BitcoinKey.from_mnemonic(MNEMONIC, index=1).address
        assert BitcoinKey.from_mnemonic(MNEMONIC, "BTCTEST").address[0] in "mn"

    def test_from_bad_mnemonic(self):
        with pytest.raises(ConfigurationError):
            BitcoinKey.from_mnemonic("not a valid phrase at all")


class TestScriptNumbers:
    """Minimal script number encoding."""

    def test_sign_bit_padding(self):
        assert encode_number(128) == b"\x80\x00"
        assert encode_number(-1) == b"\x81"
        assert encode_number(0) == b""

    @pytest.mark.parametrize("value", [1, 127, 128, 255, 800_288, -300])
    def test_decode_inverts_encode(self, value):
        assert decode_number(encode_number(value)) == value


# =============================================================================
# Fees and UTXO selection
# =============================================================================

class TestFees:
    """Fee estimation."""

    def test_fee_for_one_input(self):
        assert builder.calculate_fee(20, 1, AMOUNT, FUNDING).unwrap() == 20 * (148 + 34 + 10 - 1)

    def test_zero_fee_is_valid(self):
        assert builder.calculate_fee(0, 2, 500, 500).unwrap() == 0

    def test_insufficient_funds(self):
        result = builder.calculate_fee(20, 1, FUNDING - 1000, FUNDING)
        assert isinstance(result.error, InsufficientFunds)

    def test_empty_oracle_response(self, alice_btc):
        result = builder.select_utxos({"data": {"txs": []}}, alice_btc.address)
        assert isinstance(result.error, NoFundsFound)

    def test_selection_sums_outputs(self, alice_btc):
        selection = builder.select_utxos(oracle_response(alice_btc, ("0.5", "0.25")), alice_btc.address).unwrap()
        assert selection.total_available == 75_000_000
        assert [i.output_index for i in selection.inputs] == [0, 1]

    def test_coin_conversion_is_exact(self):
        assert builder.coins_to_satoshis("0.1") == 10_000_000
        assert builder.satoshis_to_coins(100_000) == "0.001"


# =============================================================================
# Escrow script
# =============================================================================

class TestEscrowScript:
    """Two-of-two escrow with a refund branch."""

    def test_deterministic(self, bob_btc, escrow_btc, alice_btc):
        args = (bob_btc.public_key, escrow_btc.public_key, alice_btc.key_hash, LOCK_DAYS, START_HEIGHT)
        assert builder.build_escrow_script(*args) == builder.build_escrow_script(*args)

    def test_locktime_and_keys(self, bob_btc, escrow_btc, alice_btc):
        script = builder.build_escrow_script(
            bob_btc.public_key, escrow_btc.public_key, alice_btc.key_hash, LOCK_DAYS, START_HEIGHT,
        )
        assert builder.escrow_locktime(script) == START_HEIGHT + 288
        assert builder.escrow_keys(script) == [bob_btc.public_key, escrow_btc.public_key]
        assert script.elements[0] == OP_IF
        assert script.elements[1] != 0

    def test_survives_serialization(self, bob_btc, escrow_btc, alice_btc):
        script = builder.build_escrow_script(
            bob_btc.public_key, escrow_btc.public_key, alice_btc.key_hash, 0.5, 100,
        )
        assert Script.from_hex(script.hex()) == script
        assert builder.escrow_locktime(Script.from_hex(script.hex())) == 172

    def test_locktime_days_round_trip(self):
        assert builder.locktime_in_days(builder.locktime_from_days(2, 0)) == 2


# =============================================================================
# Staged transactions
# =============================================================================

class TestStage1:
    """Locking coins into escrow."""

    def test_outputs(self, stage1, alice_btc):
        assert stage1.outputs[0].amount == AMOUNT
        assert OP_CHECKMULTISIG in stage1.outputs[0].script.elements
        assert stage1.outputs[1] == TxOutput(FUNDING - AMOUNT - 3820, p2pkh_script(alice_btc.key_hash))
        assert stage1.fee == 3820

    def test_inputs_are_signed(self, stage1):
        assert verify_transaction(stage1)

    def test_verifies_for_counterparty(self, stage1, bob_btc, escrow_btc):
        expectations = Stage1Expectations(AMOUNT, bob_btc.public_key.hex(), escrow_btc.public_key.hex())
        received = Transaction.from_dict(stage1.to_dict())
        assert received.txid == stage1.txid
        assert builder.verify_stage1(received, expectations)

    def test_wrong_amount(self, stage1, bob_btc, escrow_btc):
        expectations = Stage1Expectations(AMOUNT + 1, bob_btc.public_key.hex(), escrow_btc.public_key.hex())
        assert isinstance(builder.check_stage1(stage1, expectations).error, ExpectationMismatch)

    def test_tampered_output_breaks_signature(self, stage1, bob_btc, escrow_btc):
        tampered = replace(stage1, outputs=(replace(stage1.outputs[0], amount=AMOUNT * 2),) + stage1.outputs[1:])
        expectations = Stage1Expectations(AMOUNT * 2, bob_btc.public_key.hex(), escrow_btc.public_key.hex())
        assert isinstance(builder.check_stage1(tampered, expectations).error, SignatureInvalid)

    def test_not_addressed_to_us(self, stage1, alice_btc, escrow_btc):
        expectations = Stage1Expectations(AMOUNT, alice_btc.public_key.hex(), escrow_btc.public_key.hex())
        assert not builder.verify_stage1(stage1, expectations)

    def test_zero_fee_schedule(self, alice_btc, bob_btc, escrow_btc):
        tx = builder.build_stage1_transaction(
            oracle_response(alice_btc), alice_btc, bob_btc.public_key, escrow_btc.public_key,
            FUNDING, LOCK_DAYS, START_HEIGHT, FeeSchedule(satoshis_per_byte=0),
        ).unwrap()
        assert len(tx.outputs) == 1
        assert tx.fee == 0

    def test_insufficient_funds(self, alice_btc, bob_btc, escrow_btc):
        result = builder.build_stage1_transaction(
            oracle_response(alice_btc), alice_btc, bob_btc.public_key, escrow_btc.public_key,
            FUNDING, LOCK_DAYS, START_HEIGHT,
        )
        assert isinstance(result.error, InsufficientFunds)


class TestStage2:
    """Claiming the escrow output with the escrow signer's help."""

    def test_spends_escrow_output(self, stage1, stage2):
        assert len(stage2.inputs) == 1
        assert stage2.inputs[0].txid == stage1.txid
        assert stage2.inputs[0].output_index == 0
        assert stage2.outputs[0].amount == 90_000

    def test_partial_signature_checks(self, stage2, bob_btc, alice_btc):
        assert builder.check_stage2_partial(stage2, bob_btc.public_key).is_ok()
        assert isinstance(builder.check_stage2_partial(stage2, alice_btc.public_key).error, SignatureInvalid)

    def test_partial_alone_cannot_spend(self, stage2):
        assert not verify_input(stage2, 0)

    def test_completed_by_escrow(self, stage2, escrow_btc):
        signatures = [escrow_btc.sign_digest(bytes.fromhex(m)) for m in builder.stage2_messages(stage2)]
        completed = builder.apply_escrow_signatures(stage2, escrow_btc.public_key, signatures).unwrap()
        assert verify_transaction(completed)

    def test_rejects_foreign_signature(self, stage2, escrow_btc, alice_btc):
        signatures = [alice_btc.sign_digest(bytes.fromhex(m)) for m in builder.stage2_messages(stage2)]
        result = builder.apply_escrow_signatures(stage2, escrow_btc.public_key, signatures)
        assert isinstance(result.error, SignatureInvalid)

    def test_rejects_wrong_signature_count(self, stage2, escrow_btc):
        result = builder.apply_escrow_signatures(stage2, escrow_btc.public_key, [])
        assert isinstance(result.error, SignatureInvalid)

    def test_applies_supplied_signature(self, stage1, stage2, bob_btc):
        applied = stage2.inputs[0].script_sig.elements[1]
        utxos = builder.escrow_outputs_as_utxos(stage1, bob_btc.public_key, bob_btc.address)

        rebuilt = builder.build_stage2_partial(utxos, bob_btc, 90_000, applied_signature=applied).unwrap()

        assert rebuilt.inputs[0].script_sig.elements == (b"", applied)
        assert builder.check_stage2_partial(rebuilt, bob_btc.public_key).is_ok()

    def test_supplied_signature_from_wrong_key(self, stage1, bob_btc, alice_btc):
        utxos = builder.escrow_outputs_as_utxos(stage1, bob_btc.public_key, bob_btc.address)
        unsigned = builder.build_stage2_partial(utxos, bob_btc, 90_000).unwrap()
        digest = unsigned.signature_hash(0, unsigned.inputs[0].prev_script)
        foreign = alice_btc.sign_digest(digest) + b"\x01"

        rebuilt = builder.build_stage2_partial(utxos, bob_btc, 90_000, applied_signature=foreign).unwrap()

        assert rebuilt.inputs[0].script_sig.elements == (b"", foreign)
        assert isinstance(builder.check_stage2_partial(rebuilt, bob_btc.public_key).error, SignatureInvalid)

    def test_received_partial_uses_local_prevouts(self, stage1, stage2, bob_btc):
        received = Transaction.parse(bytes.fromhex(stage2.hex()))
        received = builder.replace_prevouts(received, [stage1.outputs[0]])
        assert builder.check_stage2_partial(received, bob_btc.public_key).is_ok()


class TestRefund:
    """Reclaiming the escrow output after the locktime."""

    def test_refund_after_locktime(self, stage1, alice_btc):
        refund = builder.build_refund_transaction(stage1, alice_btc).unwrap()
        assert refund.locktime == START_HEIGHT + 288
        assert refund.inputs[0].sequence == SEQUENCE_LOCKTIME
        assert refund.outputs[0].script == p2pkh_script(alice_btc.key_hash)
        assert verify_input(refund, 0)

    def test_refund_before_locktime_fails(self, stage1, alice_btc):
        refund = builder.build_refund_transaction(stage1, alice_btc).unwrap()
        early = replace(refund, locktime=START_HEIGHT)
        assert not verify_input(early, 0)

    def test_only_funder_can_refund(self, stage1, bob_btc):
        refund = builder.build_refund_transaction(stage1, bob_btc).unwrap()
        assert not verify_input(refund, 0)
