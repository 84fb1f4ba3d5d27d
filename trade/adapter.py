"""Interfaces the trade state machine drives its ledgers through."""

from typing import Any, Dict, List, Protocol, Sequence

from core.result import Result


class ChainAdapter(Protocol):
    """Ledger that carries the escrowed leg of a trade.

    ``request`` and ``expectations`` arguments are adapter specific; the
    state machine passes them through from its caller untouched.
    """

    name: str  # network identifier sent to the escrow signer

    async def build_stage1(self, request: Any, escrow_public_key: str) -> Result[Any]:
        ...

    def verify_stage1(self, payload: Dict[str, Any], expectations: Any) -> Result[Any]:
        ...

    async def build_stage2_partial(self, request: Any, stage1: Any) -> Result[Any]:
        ...

    def verify_stage2_partial(self, payload: Dict[str, Any], stage1: Any, expectations: Any) -> Result[Any]:
        ...

    def escrow_messages(self, stage2: Any) -> List[str]:
        ...

    def apply_escrow_signatures(self, stage2: Any, escrow_public_key: str,
                                signatures: Sequence[str]) -> Result[Any]:
        ...

    async def build_refund(self, request: Any, stage1: Any) -> Result[Any]:
        ...

    async def submit(self, transaction: Any) -> Result[str]:
        ...

    def encode(self, transaction: Any) -> Dict[str, Any]:
        ...

    def decode(self, payload: Dict[str, Any]) -> Result[Any]:
        ...


class SettlementAdapter(Protocol):
    """Ledger that settles the exchange with two matching half transactions."""

    async def fetch_snapshot(self, addresses: Sequence[str]) -> Result[Dict[str, Any]]:
        ...

    def build_half(self, snapshot: Dict[str, Any], terms: Any, their_commitment: str,
                   correlation_id: str) -> Result[Any]:
        ...

    def spender_commitment(self, snapshot: Dict[str, Any], terms: Any) -> Result[str]:
        ...

    async def submit_half(self, half: Any) -> Result[str]:
        ...
