"""Pydantic models for API responses."""

from typing import Optional
from pydantic import BaseModel


class TradeStatus(BaseModel):
    """Progress of the trade with one counterparty."""
    counterparty: str
    status: str  # Status name, or "FAILED"
    last_event: str
    our_address: str
    failure_reason: Optional[str] = None


class EscrowKeyResponse(BaseModel):
    """Escrow signer key for the bitcoin leg."""
    network: str
    public_key: str


class HealthResponse(BaseModel):
    """API health check response."""
    status: str
    service: str
    version: str
