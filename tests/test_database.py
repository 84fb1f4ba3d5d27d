"""
Tests for trade progress persistence
"""

import asyncio
from dataclasses import replace

import pytest

from btc import builder
from btc.transaction import Transaction
from core.result import Ok
from core.types import Status, TradeProgress
from database import TradeDatabase
from service import SwapService
from trade.store import TradeStore


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def stage1_lock(oracle, alice_btc, bob_btc, escrow_btc):
    oracle.fund(alice_btc)
    utxos = run(oracle.fetch_utxos(alice_btc.address))
    return builder.build_stage1_transaction(
        utxos, alice_btc, bob_btc.public_key, escrow_btc.public_key, 100_000, 2, 800_000,
    ).unwrap()


class TestTradeDatabase:
    """SQLite records and engine state."""

    def test_progress_round_trip(self, clock):
        async def _run():
            db = TradeDatabase(":memory:")
            await db.start()
            record = TradeProgress(Status.FRESH_TEST_SENT, clock(), "our_address", nonce="ab" * 16)
            await db.save_progress("their_address", record)
            loaded = await db.get_progress("their_address")
            missing = await db.get_progress("nobody")
            await db.stop()
            return record, loaded, missing

        record, loaded, missing = run(_run())
        assert loaded == record
        assert missing is None

    def test_failed_record(self, clock):
        async def _run():
            db = TradeDatabase(":memory:")
            await db.start()
            await db.save_progress("a", TradeProgress(None, clock(), "us", failure_reason="refunded after locktime"))
            records = await db.list_progress()
            await db.stop()
            return records

        records = run(_run())
        assert records["a"].failed
        assert records["a"].failure_reason == "refunded after locktime"

    def test_state(self):
        async def _run():
            db = TradeDatabase(":memory:")
            await db.start()
            await db.set_state("escrow_public_key", "02ab")
            await db.set_state("escrow_public_key", "03cd")
            value = await db.get_state("escrow_public_key")
            await db.stop()
            return value

        assert run(_run()) == "03cd"


class TestTradeStore:
    """Write-through store."""

    def test_records_survive_reload(self, tmp_path, clock):
        path = str(tmp_path / "trades.db")

        async def _run():
            db = TradeDatabase(path)
            await db.start()
            store = TradeStore(db)
            record = TradeProgress(Status.BOTH_SIGNED, clock(), "us")
            await store.save("them", record)
            await store.save("them", replace(record, status=Status.STAGE1_SENT))
            await db.stop()

            db = TradeDatabase(path)
            await db.start()
            reloaded = TradeStore(db)
            count = await reloaded.load()
            await db.stop()
            return count, reloaded.get("them")

        count, record = run(_run())
        assert count == 1
        assert record.status == Status.STAGE1_SENT

    def test_artifacts_are_per_counterparty(self):
        store = TradeStore()
        store.artifacts("a").refundable = True
        assert not store.artifacts("b").refundable
        run(store.clear_artifacts("a"))
        assert not store.artifacts("a").refundable

    def test_artifacts_survive_reload(self, tmp_path, stage1_lock):
        path = str(tmp_path / "trades.db")
        encode = Transaction.to_dict

        def decode(payload):
            return Ok(Transaction.from_dict(payload))

        async def _run():
            db = TradeDatabase(path)
            await db.start()
            store = TradeStore(db)
            artifacts = store.artifacts("them")
            artifacts.stage1 = stage1_lock
            artifacts.refundable = True
            artifacts.correlation_id = "DRUID0123456789a"
            await store.save_artifacts("them", encode)
            await store.save_artifacts("nobody", encode)
            await db.stop()

            db = TradeDatabase(path)
            await db.start()
            reloaded = TradeStore(db)
            await reloaded.load(decode)
            saved = await db.list_artifacts()
            await db.stop()
            return reloaded.artifacts("them"), saved

        artifacts, saved = run(_run())
        assert artifacts.stage1.txid == stage1_lock.txid
        assert artifacts.refundable
        assert artifacts.correlation_id == "DRUID0123456789a"
        assert artifacts.settlement_terms is None
        assert list(saved) == ["them"]


class TestSwapService:
    """Service start and stop."""

    def test_escrow_key_and_trades_restored(self, tmp_path, engine_config, clock, escrow, escrow_btc):
        config = replace(engine_config, database_path=str(tmp_path / "service.db"))

        async def first_run():
            service = SwapService(config)
            await service.start()
            service.session.escrow = escrow
            assert (await service.session.get_escrow_key()).ok
            await service.session.store.save("them", TradeProgress(Status.STAGE1_SENT, clock(), "us"))
            await service.stop()

        async def second_run():
            service = SwapService(config)
            await service.start()
            restored = (service.session.escrow_key, service.session.progress("them"))
            await service.stop()
            return restored

        run(first_run())
        escrow_key, record = run(second_run())

        assert escrow_key == escrow_btc.public_key.hex()
        assert record.status == Status.STAGE1_SENT

    def test_escrow_key_pinned_when_fetched(self, tmp_path, engine_config, escrow, escrow_btc):
        config = replace(engine_config, database_path=str(tmp_path / "service.db"))

        async def _run():
            service = SwapService(config)
            await service.start()
            service.session.escrow = escrow
            await service.session.get_escrow_key()
            pinned = await service.db.get_state("escrow_public_key")
            await service.stop()
            return pinned

        assert run(_run()) == escrow_btc.public_key.hex()
