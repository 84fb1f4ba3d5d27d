"""Trade progress API endpoints."""

import logging
from typing import List
from fastapi import APIRouter, HTTPException, Depends

from api.models import EscrowKeyResponse, TradeStatus
from api.dependencies import get_session
from core.types import TradeProgress
from trade.engine import TradeSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["trades"])


def _status(counterparty: str, progress: TradeProgress) -> TradeStatus:
    record = progress.to_dict()
    return TradeStatus(
        counterparty=counterparty,
        status=record["status"],
        last_event=record["last_event"],
        our_address=record["our_address"],
        failure_reason=record["failure_reason"],
    )


@router.get("/trades", response_model=List[TradeStatus])
async def list_trades(session: TradeSession = Depends(get_session)):
    """Progress of every trade this node has taken part in."""
    return [_status(counterparty, progress) for counterparty, progress in session.trades().items()]


@router.get("/trades/{address}", response_model=TradeStatus)
async def get_trade(address: str, session: TradeSession = Depends(get_session)):
    """Progress of the trade with one counterparty."""
    progress = session.progress(address)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No trade with {address}")
    return _status(address, progress)


@router.get("/escrow-key", response_model=EscrowKeyResponse)
async def get_escrow_key(session: TradeSession = Depends(get_session)):
    """Escrow signer key, fetched on first use."""
    response = await session.get_escrow_key()
    if not response.ok:
        logger.error(f"Failed to get escrow key: {response.reason}")
        raise HTTPException(status_code=502, detail=response.reason)
    return EscrowKeyResponse(network=session.chain.name, public_key=response.content["public_key"])
