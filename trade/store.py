"""Per-session store of trade progress and in-flight trade artifacts."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from core.errors import TradeError
from core.result import Result
from core.types import TradeProgress
from database import TradeDatabase

logger = logging.getLogger(__name__)

Encoder = Callable[[Any], Dict[str, Any]]
Decoder = Callable[[Dict[str, Any]], Result[Any]]

ESCROW_KEY_STATE = "escrow_public_key"


@dataclass
class TradeArtifacts:
    """Transactions and proposals held while a trade runs.

    Everything except ``settlement_terms`` is written to the database;
    the terms carry a keypair lookup and are supplied again after a restart.
    """
    stage1: Any = None
    stage2: Any = None
    settlement_terms: Any = None
    settlement_snapshot: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None
    our_commitment: Optional[str] = None
    refundable: bool = False  # stage1 is our own escrow lock

    def to_dict(self, encode: Encoder) -> Dict[str, Any]:
        return {
            "stage1": encode(self.stage1) if self.stage1 is not None else None,
            "stage2": encode(self.stage2) if self.stage2 is not None else None,
            "settlement_snapshot": self.settlement_snapshot,
            "correlation_id": self.correlation_id,
            "our_commitment": self.our_commitment,
            "refundable": self.refundable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], decode: Decoder) -> "TradeArtifacts":
        """Rebuild saved artifacts.

        Raises:
            TradeError: If a saved transaction no longer decodes
        """
        def _transaction(payload):
            return decode(payload).unwrap() if payload else None

        return cls(
            stage1=_transaction(data.get("stage1")),
            stage2=_transaction(data.get("stage2")),
            settlement_snapshot=data.get("settlement_snapshot"),
            correlation_id=data.get("correlation_id"),
            our_commitment=data.get("our_commitment"),
            refundable=bool(data.get("refundable")),
        )


class TradeStore:
    """Trade progress keyed by counterparty trade address.

    Each counterparty gets its own ``asyncio.Lock``; operations on different
    counterparties never wait on each other. When a database is attached
    every saved record and artifact set is written through to it.
    """

    def __init__(self, database: Optional[TradeDatabase] = None):
        self.database = database
        self._records: Dict[str, TradeProgress] = {}
        self._artifacts: Dict[str, TradeArtifacts] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def load(self, decode: Optional[Decoder] = None) -> int:
        """Restore records, and artifacts when ``decode`` is given, from the database.

        Returns:
            Number of records restored
        """
        if self.database is None:
            return 0
        records = await self.database.list_progress()
        self._records.update(records)

        if decode is not None:
            for counterparty, data in (await self.database.list_artifacts()).items():
                try:
                    self._artifacts[counterparty] = TradeArtifacts.from_dict(data, decode)
                except TradeError as e:
                    logger.error(f"Could not restore artifacts for {counterparty[:16]}...: {e}")

        logger.info(f"Restored {len(records)} trade records")
        return len(records)

    def lock(self, counterparty: str) -> asyncio.Lock:
        return self._locks.setdefault(counterparty, asyncio.Lock())

    def get(self, counterparty: str) -> Optional[TradeProgress]:
        return self._records.get(counterparty)

    def all(self) -> Dict[str, TradeProgress]:
        return dict(self._records)

    async def save(self, counterparty: str, progress: TradeProgress) -> None:
        self._records[counterparty] = progress
        if self.database is not None:
            await self.database.save_progress(counterparty, progress)

    def artifacts(self, counterparty: str) -> TradeArtifacts:
        return self._artifacts.setdefault(counterparty, TradeArtifacts())

    async def save_artifacts(self, counterparty: str, encode: Encoder) -> None:
        if self.database is not None and counterparty in self._artifacts:
            await self.database.save_artifacts(counterparty, self._artifacts[counterparty].to_dict(encode))

    async def clear_artifacts(self, counterparty: str) -> None:
        self._artifacts.pop(counterparty, None)
        if self.database is not None:
            await self.database.delete_artifacts(counterparty)

    async def load_escrow_key(self) -> Optional[str]:
        if self.database is None:
            return None
        return await self.database.get_state(ESCROW_KEY_STATE)

    async def save_escrow_key(self, public_key: str) -> None:
        if self.database is not None:
            await self.database.set_state(ESCROW_KEY_STATE, public_key)
