"""
Shared fixtures: keys, configuration and in-memory stand-ins for the
mailbox, escrow signer, UTXO oracle and compute node.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from btc.keys import BitcoinKey
from btc.script import p2pkh_script
from btc.transaction import Transaction
from config import EngineConfig
from wallet import keypair_from_secret, verify_signature


# =============================================================================
# In-memory services
# =============================================================================

class FakeMailbox:
    """Mailbox relay that checks envelope signatures like the real one."""

    def __init__(self):
        self.store = {}
        self.rejected = 0

    def _authorised(self, envelope, own_address):
        ok = (
            envelope["publicKey"] == own_address
            and verify_signature(envelope["signature"], bytes.fromhex(own_address), envelope["publicKey"])
        )
        if not ok:
            self.rejected += 1
        return ok

    async def set_data(self, envelope):
        await asyncio.sleep(0)  # let concurrent callers interleave
        if self._authorised(envelope, envelope["field"]):
            self.store.setdefault(envelope["key"], {})[envelope["field"]] = {
                "timestamp": 0,
                "value": envelope["value"],
            }

    async def get_data(self, envelope):
        if not self._authorised(envelope, envelope["key"]):
            return {}
        return dict(self.store.get(envelope["key"], {}))

    async def delete_data(self, envelope):
        if self._authorised(envelope, envelope["key"]):
            self.store.get(envelope["key"], {}).pop(envelope["field"], None)


class FakeEscrow:
    """Escrow signer holding one bitcoin key."""

    def __init__(self, key):
        self.key = key
        self.requests = []

    async def get_public_key(self, network):
        return self.key.public_key.hex()

    async def get_signature(self, message, public_key, network):
        self.requests.append(message)
        return {
            "public_key": self.key.public_key.hex(),
            "signature": self.key.sign_digest(bytes.fromhex(message)).hex(),
        }


class FakeOracle:
    """UTXO oracle serving fixed outputs and recording broadcasts."""

    def __init__(self):
        self.utxos = {}
        self.broadcasts = []

    def fund(self, key, value="0.01", txid="aa" * 32, output_no=0):
        self.utxos.setdefault(key.address, []).append({
            "value": value,
            "script_hex": p2pkh_script(key.key_hash).hex(),
            "txid": txid,
            "output_no": output_no,
        })

    async def fetch_utxos(self, address):
        return {"status": "success", "data": {"address": address, "txs": list(self.utxos.get(address, []))}}

    async def broadcast(self, tx_hex):
        self.broadcasts.append(tx_hex)
        return Transaction.parse(bytes.fromhex(tx_hex)).txid


class FakeComputeNode:
    """Compute node with a fixed balance snapshot."""

    def __init__(self, snapshot=None):
        self.snapshot = snapshot or {}
        self.submitted = []

    async def fetch_balance(self, addresses):
        return {address: self.snapshot.get(address, {"outputs": []}) for address in addresses}

    async def create_transactions(self, transactions):
        self.submitted.extend(transactions)
        return {"accepted": len(transactions)}


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def alice():
    """Native ledger keypair of the party that locks bitcoin."""
    return keypair_from_secret(bytes([1]) * 32)


@pytest.fixture
def bob():
    """Native ledger keypair of the party that claims bitcoin."""
    return keypair_from_secret(bytes([2]) * 32)


@pytest.fixture
def alice_btc():
    return BitcoinKey.from_secret(bytes([0x11]) * 32)


@pytest.fixture
def bob_btc():
    return BitcoinKey.from_secret(bytes([0x22]) * 32)


@pytest.fixture
def escrow_btc():
    return BitcoinKey.from_secret(bytes([0x33]) * 32)


@pytest.fixture
def engine_config():
    return EngineConfig(
        mailbox_url="http://mailbox.test",
        oracle_url="http://oracle.test",
        escrow_url="http://escrow.test",
        compute_url="http://compute.test",
    )


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def escrow(escrow_btc):
    return FakeEscrow(escrow_btc)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def compute():
    return FakeComputeNode()
