"""Native ledger keypairs: derivation, addresses, signing and verification."""

import hashlib
import logging
from typing import Callable, Dict, Optional

from bip_utils import Bip32Slip10Ed25519, Bip39MnemonicValidator, Bip39SeedGenerator
from ecdsa import Ed25519, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.keys import BadSignatureError

from core.errors import ConfigurationError
from core.types import Keypair

logger = logging.getLogger(__name__)

# Hardened derivation path for trading keys
TRADE_KEY_PATH = "m/0'/0'"


def construct_address(public_key: bytes) -> str:
    """Derive the ledger address for a public key (SHA3-256, hex)."""
    return hashlib.sha3_256(public_key).hexdigest()


def keypair_from_secret(secret_key: bytes, address_version: Optional[int] = None) -> Keypair:
    """Build a keypair from a 32 byte Ed25519 seed.

    Args:
        secret_key: Ed25519 private key seed
        address_version: Ledger address version, ``None`` for the latest

    Returns:
        Keypair instance
    """
    signing_key = SigningKey.from_string(secret_key, curve=Ed25519)
    public_key = signing_key.get_verifying_key().to_string()
    return Keypair(
        address=construct_address(public_key),
        public_key=public_key,
        secret_key=signing_key.to_string(),
        address_version=address_version,
    )


def generate_keypair(address_version: Optional[int] = None) -> Keypair:
    """Generate a fresh random keypair."""
    signing_key = SigningKey.generate(curve=Ed25519)
    return keypair_from_secret(signing_key.to_string(), address_version)


def load_keypair_from_mnemonic(mnemonic: str, index: int = 0) -> Keypair:
    """Load a trading keypair from a BIP39 mnemonic.

    Args:
        mnemonic: 12 or 24-word mnemonic phrase
        index: Hardened child index below the trade key path

    Returns:
        Keypair instance

    Raises:
        ConfigurationError: If mnemonic is invalid
    """
    if not mnemonic or not mnemonic.strip():
        raise ConfigurationError("Mnemonic cannot be empty")

    mnemonic = mnemonic.strip()

    if not Bip39MnemonicValidator().IsValid(mnemonic):
        raise ConfigurationError("Invalid mnemonic phrase")

    seed_bytes = Bip39SeedGenerator(mnemonic).Generate()

    # SLIP-10 only supports hardened derivation for Ed25519
    bip32_ctx = Bip32Slip10Ed25519.FromSeed(seed_bytes).DerivePath(f"{TRADE_KEY_PATH}/{index}'")
    keypair = keypair_from_secret(bip32_ctx.PrivateKey().Raw().ToBytes())

    logger.info(f"Loaded trading keypair with address: {keypair.address[:16]}...")
    return keypair


def sign_message(secret_key: bytes, message: bytes) -> str:
    """Sign a message with an Ed25519 secret key.

    Returns:
        Hex encoded signature
    """
    signing_key = SigningKey.from_string(secret_key, curve=Ed25519)
    return signing_key.sign(message).hex()


def sign_hex(secret_key: bytes, message_hex: str) -> str:
    """Sign the bytes of a hex encoded message."""
    return sign_message(secret_key, bytes.fromhex(message_hex))


def verify_signature(signature: str, message: bytes, public_key: str) -> bool:
    """Verify a hex signature over ``message`` against a hex public key."""
    try:
        verifying_key = VerifyingKey.from_string(bytes.fromhex(public_key), curve=Ed25519)
        return verifying_key.verify(bytes.fromhex(signature), message)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


def keypair_lookup(keypairs: Dict[str, Keypair]) -> Callable[[str], Keypair]:
    """Wrap a mapping of address to keypair as a lookup callback.

    Raises:
        KeyError: From the returned callback when an address is not held
    """
    def _lookup(address: str) -> Keypair:
        if address not in keypairs:
            raise KeyError(f"No keypair held for address {address[:16]}...")
        return keypairs[address]

    return _lookup
