"""Database management for trade progress."""

import json
import sqlite3
import logging
from typing import Any, Optional, Dict
from pathlib import Path
import asyncio

from core.types import TradeProgress

logger = logging.getLogger(__name__)


class TradeDatabase:
    """SQLite store of trade progress records, trade artifacts and engine state."""

    def __init__(self, db_path: str = "helix-swap.db"):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file, or ``:memory:``
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        logger.info(f"Initialized database at {db_path}")

    async def start(self) -> None:
        """Initialize database connection and create tables."""
        await asyncio.get_event_loop().run_in_executor(None, self._init_db)
        logger.info("Database started")

    def _init_db(self) -> None:
        """Internal: Initialize database connection and schema."""
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS trade_progress (
                counterparty TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                last_event TEXT NOT NULL,
                our_address TEXT NOT NULL,
                failure_reason TEXT,
                nonce TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_trade_status
                ON trade_progress(status);

            CREATE TABLE IF NOT EXISTS trade_artifacts (
                counterparty TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS engine_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        """)
        self.conn.commit()

    async def stop(self) -> None:
        """Close database connection."""
        if self.conn:
            await asyncio.get_event_loop().run_in_executor(None, self.conn.close)
            self.conn = None
        logger.info("Database stopped")

    async def save_progress(self, counterparty: str, progress: TradeProgress) -> None:
        """Insert or replace the progress record for a counterparty.

        Args:
            counterparty: Counterparty trade address
            progress: Current progress
        """
        record = progress.to_dict()

        def _save():
            self.conn.execute(
                """INSERT OR REPLACE INTO trade_progress
                   (counterparty, status, last_event, our_address, failure_reason, nonce, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)""",
                (
                    counterparty,
                    record["status"],
                    record["last_event"],
                    record["our_address"],
                    record["failure_reason"],
                    record["nonce"],
                )
            )
            self.conn.commit()

        await asyncio.get_event_loop().run_in_executor(None, _save)
        logger.debug(f"Saved progress for {counterparty[:16]}...: {record['status']}")

    async def get_progress(self, counterparty: str) -> Optional[TradeProgress]:
        """Get the progress record for a counterparty.

        Returns:
            TradeProgress or None
        """
        def _get():
            cursor = self.conn.execute(
                "SELECT * FROM trade_progress WHERE counterparty = ?",
                (counterparty,)
            )
            return cursor.fetchone()

        row = await asyncio.get_event_loop().run_in_executor(None, _get)
        return TradeProgress.from_dict(dict(row)) if row else None

    async def list_progress(self) -> Dict[str, TradeProgress]:
        """All progress records keyed by counterparty."""
        def _list():
            cursor = self.conn.execute("SELECT * FROM trade_progress ORDER BY updated_at")
            return cursor.fetchall()

        rows = await asyncio.get_event_loop().run_in_executor(None, _list)
        return {row["counterparty"]: TradeProgress.from_dict(dict(row)) for row in rows}

    async def save_artifacts(self, counterparty: str, artifacts: Dict[str, Any]) -> None:
        """Insert or replace the in-flight trade artifacts for a counterparty.

        Args:
            counterparty: Counterparty trade address
            artifacts: JSON serializable artifacts
        """
        data = json.dumps(artifacts, sort_keys=True)

        def _save():
            self.conn.execute(
                """INSERT OR REPLACE INTO trade_artifacts (counterparty, data, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)""",
                (counterparty, data)
            )
            self.conn.commit()

        await asyncio.get_event_loop().run_in_executor(None, _save)

    async def delete_artifacts(self, counterparty: str) -> None:
        def _delete():
            self.conn.execute("DELETE FROM trade_artifacts WHERE counterparty = ?", (counterparty,))
            self.conn.commit()

        await asyncio.get_event_loop().run_in_executor(None, _delete)

    async def list_artifacts(self) -> Dict[str, Dict[str, Any]]:
        """All saved artifacts keyed by counterparty."""
        def _list():
            return self.conn.execute("SELECT counterparty, data FROM trade_artifacts").fetchall()

        rows = await asyncio.get_event_loop().run_in_executor(None, _list)
        return {row["counterparty"]: json.loads(row["data"]) for row in rows}

    async def get_state(self, key: str) -> Optional[str]:
        """Get a state value.

        Args:
            key: State key

        Returns:
            State value or None
        """
        def _get():
            cursor = self.conn.execute(
                "SELECT value FROM engine_state WHERE key = ?",
                (key,)
            )
            row = cursor.fetchone()
            return row["value"] if row else None

        return await asyncio.get_event_loop().run_in_executor(None, _get)

    async def set_state(self, key: str, value: str) -> None:
        """Set a state value.

        Args:
            key: State key
            value: State value
        """
        def _set():
            self.conn.execute(
                """INSERT OR REPLACE INTO engine_state (key, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)""",
                (key, value)
            )
            self.conn.commit()

        await asyncio.get_event_loop().run_in_executor(None, _set)
