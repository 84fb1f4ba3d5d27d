"""Native ledger settlement via matching half transactions."""

from ledger.adapter import NativeLedgerAdapter, SettlementTerms
from ledger.client import ComputeNodeClient

__all__ = [
    "NativeLedgerAdapter",
    "SettlementTerms",
    "ComputeNodeClient",
]
