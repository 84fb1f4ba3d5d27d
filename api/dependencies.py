"""Shared dependencies for API routes."""

from typing import Optional
from fastapi import HTTPException
from trade.engine import TradeSession

# Global session instance
_session: Optional[TradeSession] = None


def set_session(session: Optional[TradeSession]) -> None:
    """Set the global trade session instance."""
    global _session
    _session = session


def get_session() -> TradeSession:
    """Get the trade session dependency."""
    if not _session:
        raise HTTPException(status_code=503, detail="Trade session not initialized")
    return _session
