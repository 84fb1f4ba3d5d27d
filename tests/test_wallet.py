"""
Tests for native ledger keypairs and signatures
"""

import pytest

from core.errors import ConfigurationError
from wallet import (
    construct_address,
    generate_keypair,
    keypair_from_secret,
    keypair_lookup,
    load_keypair_from_mnemonic,
    sign_message,
    verify_signature,
)

MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


class TestKeypairs:
    """Derivation and addresses."""

    def test_from_secret_is_deterministic(self):
        first = keypair_from_secret(bytes([7]) * 32)
        second = keypair_from_secret(bytes([7]) * 32)
        assert first == second
        assert first.address == construct_address(first.public_key)
        assert first.trade_address == first.public_key.hex()

    def test_generated_keys_differ(self):
        assert generate_keypair().public_key != generate_keypair().public_key

    def test_mnemonic_indices(self):
        first = load_keypair_from_mnemonic(MNEMONIC)
        assert first == load_keypair_from_mnemonic(MNEMONIC)
        assert first != load_keypair_from_mnemonic(MNEMONIC, index=1)

    @pytest.mark.parametrize("mnemonic", ["", "   ", "not a valid phrase at all"])
    def test_bad_mnemonic(self, mnemonic):
        with pytest.raises(ConfigurationError):
            load_keypair_from_mnemonic(mnemonic)

    def test_repr_hides_secret(self):
        keypair = keypair_from_secret(bytes([7]) * 32)
        assert keypair.secret_key.hex() not in repr(keypair)


class TestSignatures:
    """Ed25519 signing."""

    def test_sign_and_verify(self, alice):
        signature = sign_message(alice.secret_key, b"challenge")
        assert verify_signature(signature, b"challenge", alice.public_key.hex())

    def test_wrong_key(self, alice, bob):
        signature = sign_message(alice.secret_key, b"challenge")
        assert not verify_signature(signature, b"challenge", bob.public_key.hex())

    def test_garbage_does_not_raise(self, alice):
        assert not verify_signature("zz", b"challenge", alice.public_key.hex())
        assert not verify_signature("00" * 64, b"challenge", "abcd")


class TestLookup:
    def test_lookup(self, alice):
        lookup = keypair_lookup({alice.address: alice})
        assert lookup(alice.address) is alice
        with pytest.raises(KeyError):
            lookup("elsewhere")
