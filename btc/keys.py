"""Bitcoin keys and P2PKH addresses."""

import hashlib
import logging
from dataclasses import dataclass

from bip_utils import Base58Decoder, Base58Encoder, Bip39MnemonicValidator, Bip39SeedGenerator, Bip44, Bip44Changes, Bip44Coins
from Crypto.Hash import RIPEMD160
from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.keys import BadSignatureError
from ecdsa.util import sigdecode_der, sigencode_der_canonize

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Network name -> (P2PKH version byte, WIF version byte)
NETWORK_VERSIONS = {
    "BTC": (0x00, 0x80),
    "BTCTEST": (0x6F, 0xEF),
}


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def _versions(network: str):
    try:
        return NETWORK_VERSIONS[network.upper()]
    except KeyError:
        raise ConfigurationError(f"Unknown bitcoin network: {network}")


def p2pkh_address(key_hash: bytes, network: str = "BTC") -> str:
    """Base58Check P2PKH address for a 20 byte key hash."""
    version, _ = _versions(network)
    return Base58Encoder.CheckEncode(bytes([version]) + key_hash)


def address_to_key_hash(address: str) -> bytes:
    """Extract the key hash from a P2PKH address.

    Raises:
        ValueError: If the address is not a P2PKH address
    """
    payload = Base58Decoder.CheckDecode(address)
    if len(payload) != 21:
        raise ValueError(f"Not a P2PKH address: {address}")
    return payload[1:]


def verify_der(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    """Check a DER signature over a 32 byte digest."""
    try:
        verifying_key = VerifyingKey.from_string(public_key, curve=SECP256k1)
        return verifying_key.verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


@dataclass(frozen=True)
class BitcoinKey:
    """secp256k1 key used for the bitcoin leg of a trade."""
    signing_key: SigningKey
    network: str = "BTC"

    @classmethod
    def from_secret(cls, secret: bytes, network: str = "BTC") -> "BitcoinKey":
        return cls(SigningKey.from_string(secret, curve=SECP256k1), network.upper())

    @classmethod
    def generate(cls, network: str = "BTC") -> "BitcoinKey":
        return cls(SigningKey.generate(curve=SECP256k1), network.upper())

    @classmethod
    def from_wif(cls, wif: str) -> "BitcoinKey":
        """Load a key from Wallet Import Format.

        Raises:
            ConfigurationError: If the WIF string is malformed
        """
        try:
            payload = Base58Decoder.CheckDecode(wif)
        except Exception as e:
            raise ConfigurationError(f"Invalid WIF key: {e}")

        network = next(
            (name for name, (_, wif_version) in NETWORK_VERSIONS.items() if wif_version == payload[0]),
            None,
        )
        if network is None:
            raise ConfigurationError(f"Unknown WIF version byte: {payload[0]:#x}")
        # Compressed keys carry a trailing 0x01
        if len(payload) not in (33, 34):
            raise ConfigurationError("Invalid WIF key length")
        return cls.from_secret(payload[1:33], network)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, network: str = "BTC", index: int = 0) -> "BitcoinKey":
        """Derive the key at m/44'/coin'/0'/0/index.

        Raises:
            ConfigurationError: If mnemonic is invalid
        """
        mnemonic = (mnemonic or "").strip()
        if not Bip39MnemonicValidator().IsValid(mnemonic):
            raise ConfigurationError("Invalid mnemonic phrase")

        coin = Bip44Coins.BITCOIN if network.upper() == "BTC" else Bip44Coins.BITCOIN_TESTNET
        seed_bytes = Bip39SeedGenerator(mnemonic).Generate()
        bip44_account = Bip44.FromSeed(seed_bytes, coin).Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT).AddressIndex(index)
        key = cls.from_secret(bip44_account.PrivateKey().Raw().ToBytes(), network)
        logger.info(f"Loaded bitcoin key for {key.address}")
        return key

    @property
    def public_key(self) -> bytes:
        """Compressed 33 byte public key."""
        return self.signing_key.get_verifying_key().to_string("compressed")

    @property
    def key_hash(self) -> bytes:
        return hash160(self.public_key)

    @property
    def address(self) -> str:
        return p2pkh_address(self.key_hash, self.network)

    def sign_digest(self, digest: bytes) -> bytes:
        """Deterministic low-S DER signature over a 32 byte digest."""
        return self.signing_key.sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha256,
            sigencode=sigencode_der_canonize,
        )

    def wif(self) -> str:
        _, wif_version = _versions(self.network)
        return Base58Encoder.CheckEncode(bytes([wif_version]) + self.signing_key.to_string() + b"\x01")
